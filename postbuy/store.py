"""Record store and artifact storage backed by Supabase."""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Any, Dict, List, Protocol, Sequence

from loguru import logger
from supabase import Client, create_client

from postbuy.config import Settings
from postbuy.errors import RecordStoreError, UploadError

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PNG_CONTENT_TYPE = "image/png"


class RecordStore(Protocol):
    def select(self, table: str, columns: Sequence[str]) -> List[Dict[str, Any]]: ...

    def update(self, table: str, row_id: Any, fields: Dict[str, Any]) -> None: ...


class ArtifactStorage(Protocol):
    def upload(self, bucket: str, name: str, data: bytes, content_type: str) -> None: ...

    def public_url(self, bucket: str, name: str) -> str: ...


def timestamped_name(prefix: str, suffix: str) -> str:
    """``<prefix>_<UTC timestamp with microseconds>_<token><suffix>``; uploads never upsert."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return f"{prefix}_{stamp}_{secrets.token_hex(3)}{suffix}"


def create_supabase_client(settings: Settings) -> Client:
    settings.require(("SUPABASE_URL", "SUPABASE_SERVICE_KEY"))
    client = create_client(settings.supabase_url, settings.supabase_service_key)
    logger.info("Initialized Supabase client")
    return client


class SupabaseRecordStore:
    def __init__(self, client: Client):
        self.client = client

    def select(self, table: str, columns: Sequence[str]) -> List[Dict[str, Any]]:
        try:
            response = self.client.table(table).select(",".join(columns)).execute()
        except Exception as exc:
            raise RecordStoreError(f"Select from {table} failed: {exc}") from exc
        return list(response.data or [])

    def update(self, table: str, row_id: Any, fields: Dict[str, Any]) -> None:
        try:
            self.client.table(table).update(fields).eq("id", row_id).execute()
        except Exception as exc:
            raise RecordStoreError(f"Update of {table} id={row_id} failed: {exc}") from exc
        logger.debug(f"Updated {table} id={row_id}: {sorted(fields)}")


class SupabaseArtifactStorage:
    def __init__(self, client: Client):
        self.client = client

    def upload(self, bucket: str, name: str, data: bytes, content_type: str) -> None:
        try:
            self.client.storage.from_(bucket).upload(
                path=name,
                file=data,
                file_options={"content-type": content_type, "upsert": "false"},
            )
        except Exception as exc:
            raise UploadError(f"Upload of {bucket}/{name} failed: {exc}") from exc
        logger.info(f"Uploaded {bucket}/{name} ({len(data)} bytes)")

    def public_url(self, bucket: str, name: str) -> str:
        url = self.client.storage.from_(bucket).get_public_url(name)
        return url.rstrip("?")
