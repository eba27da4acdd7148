"""Shared data objects for an enrichment run."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from postbuy.address import Address

COLLECTION_COMPLETE = "complete"


class PropertyRecord(BaseModel):
    """One row of the property table. Extra store columns are kept as-is."""

    model_config = ConfigDict(extra="allow")

    id: int | str
    address: Optional[str] = ""


class TaskState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SignalKind(str, Enum):
    FILESYSTEM = "filesystem"
    DOM = "dom"
    EVENT = "event"


@dataclass(frozen=True, slots=True)
class WorkerResult:
    success: bool
    message: str
    payload: Optional[Dict[str, Any]] = None
    artifact_ref: Optional[str] = None

    def __post_init__(self) -> None:
        if self.success and self.payload is None and self.artifact_ref is None:
            raise ValueError("A successful WorkerResult needs a payload or an artifact_ref")

    @classmethod
    def failure(cls, message: str, artifact_ref: str | None = None) -> "WorkerResult":
        return cls(success=False, message=message, artifact_ref=artifact_ref)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "payload": self.payload,
            "artifact_ref": self.artifact_ref,
        }


OperationFn = Callable[[str], Awaitable[WorkerResult]]


@dataclass(frozen=True, slots=True)
class WorkerTask:
    name: str
    operation: OperationFn
    max_retries: int = 5
    retry_delay: float = 2.0

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("WorkerTask needs a name")
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.retry_delay < 0:
            raise ValueError(f"retry_delay must be >= 0, got {self.retry_delay}")


@dataclass(frozen=True, slots=True)
class CompletionSignal:
    source_kind: SignalKind
    source_name: str
    matched_identifier: str
    detected_at: datetime


@dataclass(frozen=True, slots=True)
class ResourceSnapshot:
    rss: int = 0
    vms: int = 0
    children_rss: int = 0

    @property
    def total_rss(self) -> int:
        return self.rss + self.children_rss

    def to_dict(self) -> dict[str, float]:
        return {
            "rss_mb": _mb(self.rss),
            "vms_mb": _mb(self.vms),
            "children_rss_mb": _mb(self.children_rss),
        }


@dataclass(frozen=True, slots=True)
class ResourceUsage:
    initial: ResourceSnapshot = field(default_factory=ResourceSnapshot)
    peak: ResourceSnapshot = field(default_factory=ResourceSnapshot)
    final: ResourceSnapshot = field(default_factory=ResourceSnapshot)

    def to_dict(self) -> dict[str, Any]:
        return {
            "initial": self.initial.to_dict(),
            "peak": self.peak.to_dict(),
            "final": self.final.to_dict(),
            "delta_rss_mb": round(_mb(self.final.rss) - _mb(self.initial.rss), 2),
        }


@dataclass(frozen=True, slots=True)
class AggregatedReport:
    address: str
    results: Mapping[str, WorkerResult]
    attempts: Mapping[str, int] = field(default_factory=dict)
    elapsed_seconds: float = 0.0
    resource_usage: ResourceUsage = field(default_factory=ResourceUsage)

    @property
    def successful_tasks(self) -> frozenset[str]:
        return frozenset(name for name, result in self.results.items() if result.success)

    @property
    def failed_tasks(self) -> frozenset[str]:
        return frozenset(name for name, result in self.results.items() if not result.success)

    @property
    def overall_success(self) -> bool:
        # Partial success is success.
        return len(self.successful_tasks) > 0

    @property
    def message(self) -> str:
        return f"{len(self.successful_tasks)}/{len(self.results)} tasks completed successfully"

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.overall_success,
            "message": self.message,
            "address": self.address,
            "results": {name: result.to_dict() for name, result in self.results.items()},
            "successful_tasks": sorted(self.successful_tasks),
            "failed_tasks": sorted(self.failed_tasks),
            "attempts": dict(self.attempts),
            "elapsed_seconds": round(self.elapsed_seconds, 2),
            "resource_usage": self.resource_usage.to_dict(),
        }


def _mb(value: int) -> float:
    return round(value / 1024 / 1024, 2)


__all__ = [
    "Address",
    "AggregatedReport",
    "COLLECTION_COMPLETE",
    "CompletionSignal",
    "OperationFn",
    "PropertyRecord",
    "ResourceSnapshot",
    "ResourceUsage",
    "SignalKind",
    "TaskState",
    "WorkerResult",
    "WorkerTask",
]
