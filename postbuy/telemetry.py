"""Background memory sampling for a run (observability only)."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Callable, Optional

import psutil
from loguru import logger

from postbuy.models import ResourceSnapshot, ResourceUsage


def take_snapshot(process: Optional[psutil.Process] = None) -> ResourceSnapshot:
    """Memory of this process plus its children (the browser processes)."""
    process = process or psutil.Process()
    info = process.memory_info()
    children_rss = 0
    for child in process.children(recursive=True):
        try:
            children_rss += child.memory_info().rss
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return ResourceSnapshot(rss=info.rss, vms=info.vms, children_rss=children_rss)


class ResourceSampler:
    """
    Async context manager sampling resource usage every ``interval`` seconds.

        async with ResourceSampler(interval=2.0) as sampler:
            ...
        usage = sampler.usage()
    """

    def __init__(self, interval: float = 2.0, probe: Callable[[], ResourceSnapshot] = take_snapshot):
        self.interval = interval
        self._probe = probe
        self._initial: Optional[ResourceSnapshot] = None
        self._peak: Optional[ResourceSnapshot] = None
        self._final: Optional[ResourceSnapshot] = None
        self._task: Optional[asyncio.Task] = None

    def _record(self) -> ResourceSnapshot:
        try:
            snapshot = self._probe()
        except psutil.Error as exc:
            logger.debug(f"Resource sample failed: {exc}")
            snapshot = self._peak or ResourceSnapshot()
        if self._peak is None or snapshot.total_rss > self._peak.total_rss:
            self._peak = snapshot
        return snapshot

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self._record()

    async def __aenter__(self) -> "ResourceSampler":
        self._initial = self._record()
        self._task = asyncio.create_task(self._loop())
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._final = self._record()
        usage = self.usage()
        logger.info(
            f"Memory: initial {usage.initial.to_dict()['rss_mb']}MB, "
            f"peak {usage.peak.total_rss / 1024 / 1024:.1f}MB (incl. browsers), "
            f"final {usage.final.to_dict()['rss_mb']}MB"
        )

    def usage(self) -> ResourceUsage:
        empty = ResourceSnapshot()
        return ResourceUsage(
            initial=self._initial or empty,
            peak=self._peak or empty,
            final=self._final or self._peak or empty,
        )
