"""
Worker boundary.

``Worker.run`` never raises: whatever goes wrong inside ``collect`` (element
not found, timeouts, upload or store failures, unexpected Playwright errors)
comes back as ``WorkerResult(success=False, message="<label> failure: ...")``.
"""

from __future__ import annotations

import asyncio
import functools
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from loguru import logger

from postbuy.config import Settings
from postbuy.errors import NoMatchFoundError
from postbuy.logging import bind_context
from postbuy.matcher import AddressMatcher, MatchResult
from postbuy.models import COLLECTION_COMPLETE, WorkerResult, WorkerTask
from postbuy.session import open_session
from postbuy.store import ArtifactStorage, RecordStore, timestamped_name


def status_fields(data_field: str, value: Any, status_field: str | None = None) -> Dict[str, Any]:
    """``{data_field: value, <status field>: "complete"}``."""
    status_field = status_field or f"{data_field.removesuffix('_data')}_collection_status"
    return {data_field: value, status_field: COLLECTION_COMPLETE}


class Worker(ABC):
    name: str = "worker"
    label: str = "Worker"

    def __init__(
        self,
        settings: Settings,
        store: RecordStore,
        storage: Optional[ArtifactStorage] = None,
        matcher: Optional[AddressMatcher] = None,
        session_factory: Callable = open_session,
    ):
        self.settings = settings
        self.store = store
        self.storage = storage
        self.matcher = matcher or AddressMatcher()
        self.session_factory = session_factory
        self.log = bind_context(task=self.name)

    def session(self):
        return self.session_factory(self.settings, self.name)

    @property
    def work_dir(self) -> Path:
        return self.settings.task_dir(self.name)

    async def in_executor(self, func: Callable, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    async def upload_artifact(
        self,
        bucket: str,
        path: Path,
        prefix: str,
        suffix: str,
        content_type: str,
    ) -> str:
        """Upload ``path`` under a fresh timestamped name; return its public URL."""
        if self.storage is None:
            raise RuntimeError(f"{self.label} needs artifact storage")
        name = timestamped_name(prefix, suffix)
        data = await self.in_executor(path.read_bytes)
        await self.in_executor(self.storage.upload, bucket, name, data, content_type)
        url = await self.in_executor(self.storage.public_url, bucket, name)
        self.log.info(f"Artifact available at {url}")
        return url

    async def write_fields(self, address: str, fields: Dict[str, Any]) -> MatchResult:
        return await self.in_executor(
            self.matcher.update_all, self.store, self.settings.table, address, fields
        )

    async def finish(
        self,
        address: str,
        fields: Dict[str, Any],
        payload: Dict[str, Any],
        artifact_ref: Optional[str] = None,
    ) -> WorkerResult:
        """Write ``fields`` to every matching row and build the success result."""
        try:
            match = await self.write_fields(address, fields)
        except NoMatchFoundError as exc:
            # The artifact, if any, is already uploaded; keep the reference.
            return WorkerResult.failure(f"{self.label} failure: {exc}", artifact_ref=artifact_ref)
        payload = {**payload, "updated_ids": match.ids, "matched_variant": match.matched_variant}
        return WorkerResult(
            success=True,
            message=f"{self.label} completed; updated {len(match.rows)} row(s)",
            payload=payload,
            artifact_ref=artifact_ref,
        )

    @abstractmethod
    async def collect(self, address: str) -> WorkerResult:
        """Drive the site, produce the artifact/data and record it."""

    async def run(self, address: str) -> WorkerResult:
        if not address or not address.strip():
            return WorkerResult.failure(f"{self.label} failure: address is required")
        self.log.info(f"Starting for '{address}'")
        try:
            result = await self.collect(address.strip())
        except Exception as exc:
            self.log.opt(exception=exc).error(f"{self.label} failed: {exc}")
            return WorkerResult.failure(f"{self.label} failure: {exc}")
        logger.debug(f"{self.name} result: {result.message}")
        return result

    def as_task(self, max_retries: Optional[int] = None, retry_delay: Optional[float] = None) -> WorkerTask:
        return WorkerTask(
            name=self.name,
            operation=self.run,
            max_retries=max_retries or self.settings.max_retries,
            retry_delay=self.settings.retry_delay if retry_delay is None else retry_delay,
        )
