"""Concrete enrichment workers and the default task set."""

from __future__ import annotations

from typing import Optional

from postbuy.config import HOUSECANARY_KEYS, REQUIRED_KEYS, Settings
from postbuy.models import WorkerTask
from postbuy.recognition import TextRecognizer
from postbuy.store import (
    ArtifactStorage,
    RecordStore,
    SupabaseArtifactStorage,
    SupabaseRecordStore,
    create_supabase_client,
)
from postbuy.workers.base import Worker, status_fields
from postbuy.workers.climate_risk import ClimateRiskWorker
from postbuy.workers.house_canary import HouseCanaryWorker, write_input_sheet
from postbuy.workers.offender_map import OffenderMapWorker
from postbuy.workers.school_district import SchoolDistrictWorker


def build_default_tasks(
    settings: Settings,
    store: Optional[RecordStore] = None,
    storage: Optional[ArtifactStorage] = None,
    recognizer: Optional[TextRecognizer] = None,
) -> list[WorkerTask]:
    """The four production tasks. Raises ``ConfigurationError`` before anything runs."""
    settings.require(REQUIRED_KEYS + HOUSECANARY_KEYS)
    if store is None or storage is None:
        client = create_supabase_client(settings)
        store = store or SupabaseRecordStore(client)
        storage = storage or SupabaseArtifactStorage(client)

    workers: list[Worker] = [
        ClimateRiskWorker(settings, store, storage, recognizer=recognizer),
        HouseCanaryWorker(settings, store, storage),
        SchoolDistrictWorker(settings, store, storage),
        OffenderMapWorker(settings, store, storage),
    ]
    return [worker.as_task() for worker in workers]


__all__ = [
    "ClimateRiskWorker",
    "HouseCanaryWorker",
    "OffenderMapWorker",
    "SchoolDistrictWorker",
    "Worker",
    "build_default_tasks",
    "status_fields",
    "write_input_sheet",
]
