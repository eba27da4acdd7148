"""
Completion detection for asynchronous side effects (downloads, rendered panels).

The detector polls an ordered list of signal sources. Order is priority:
every cycle checks all sources from first to last and the first satisfied
one wins, so a named-pattern source beats a generic "any new file" fallback
even when both match in the same cycle.

Usage:
    snapshot = DirectorySnapshot.take(downloads_dir, suffix=".xlsx")
    await driver.run([click("button:has-text('Generate Analysis')")])
    signal = await await_completion(
        [
            PrefixFileSource(snapshot, prefix="HouseCanary-"),
            NewFileSource(snapshot, exclude_prefixes=("sample_dexp_input_",)),
        ],
        timeout_ms=300_000,
        poll_interval_ms=5_000,
    )
"""

from __future__ import annotations

import asyncio
import re
import time
from collections import deque
from datetime import datetime, timezone
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol, Sequence

from loguru import logger
from playwright.async_api import Error as PlaywrightError

from postbuy.errors import CompletionTimeoutError
from postbuy.models import CompletionSignal, SignalKind

# Browser partial-download suffixes; never a finished artifact.
PARTIAL_SUFFIXES = (".crdownload", ".part", ".tmp", ".download")


class SignalSource(Protocol):
    name: str
    kind: SignalKind

    async def check(self) -> Optional[str]:
        """Return the matched identifier, or None when not (yet) satisfied."""
        ...


@dataclass(frozen=True, slots=True)
class DirectorySnapshot:
    """Files present in ``directory`` before the triggering action."""

    directory: Path
    names: frozenset[str]
    suffix: str = ""

    @classmethod
    def take(cls, directory: Path | str, suffix: str = "") -> "DirectorySnapshot":
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        return cls(directory=directory, names=frozenset(_list_files(directory, suffix)), suffix=suffix)

    def new_files(self) -> list[str]:
        current = _list_files(self.directory, self.suffix)
        return sorted(name for name in current if name not in self.names)


def _list_files(directory: Path, suffix: str) -> list[str]:
    if not directory.exists():
        return []
    names = []
    for entry in directory.iterdir():
        if not entry.is_file():
            continue
        if entry.name.endswith(PARTIAL_SUFFIXES):
            continue
        if suffix and not entry.name.lower().endswith(suffix.lower()):
            continue
        names.append(entry.name)
    return names


class PrefixFileSource:
    """A new file whose name starts with a known prefix (preferred signal)."""

    kind = SignalKind.FILESYSTEM

    def __init__(self, snapshot: DirectorySnapshot, prefix: str, name: str | None = None):
        self.snapshot = snapshot
        self.prefix = prefix
        self.name = name or f"prefix:{prefix}"

    async def check(self) -> Optional[str]:
        for filename in self.snapshot.new_files():
            if filename.startswith(self.prefix):
                return str(self.snapshot.directory / filename)
        return None


class NewFileSource:
    """Any file not present in the snapshot (fallback signal)."""

    kind = SignalKind.FILESYSTEM

    def __init__(
        self,
        snapshot: DirectorySnapshot,
        exclude_prefixes: Sequence[str] = (),
        name: str = "new_file",
    ):
        self.snapshot = snapshot
        self.exclude_prefixes = tuple(exclude_prefixes)
        self.name = name

    async def check(self) -> Optional[str]:
        for filename in self.snapshot.new_files():
            if self.exclude_prefixes and filename.startswith(self.exclude_prefixes):
                continue
            return str(self.snapshot.directory / filename)
        return None


class DomSelectorSource:
    """An element matching ``selector`` became visible."""

    kind = SignalKind.DOM

    def __init__(self, page, selector: str, name: str | None = None):
        self.page = page
        self.selector = selector
        self.name = name or f"dom:{selector}"

    async def check(self) -> Optional[str]:
        try:
            if await self.page.locator(self.selector).first.is_visible():
                return self.selector
        except PlaywrightError as exc:
            # Page mid-navigation or context torn down; not satisfied this cycle.
            logger.debug(f"{self.name}: {exc}")
        return None


class UrlSource:
    """The page URL matches ``pattern`` (e.g. a results view encoded in the query string)."""

    kind = SignalKind.DOM

    def __init__(self, page, pattern: str, name: str | None = None):
        self.page = page
        self.pattern = re.compile(pattern)
        self.name = name or f"url:{pattern}"

    async def check(self) -> Optional[str]:
        url = self.page.url or ""
        if self.pattern.search(url):
            return url
        return None


class EventSource:
    """Identifiers pushed by event callbacks (e.g. the browser's download event)."""

    kind = SignalKind.EVENT

    def __init__(self, name: str = "event"):
        self.name = name
        self._pending: deque[str] = deque()

    def notify(self, identifier: str) -> None:
        self._pending.append(identifier)

    async def check(self) -> Optional[str]:
        if self._pending:
            return self._pending.popleft()
        return None


@dataclass(slots=True)
class PollState:
    started_at: float
    cycles: int = 0


Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class CompletionDetector:
    def __init__(
        self,
        sources: Sequence[SignalSource],
        timeout_ms: int,
        poll_interval_ms: int = 1_000,
        grace_ms: int = 0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        if not sources:
            raise ValueError("CompletionDetector needs at least one signal source")
        if poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be positive")
        self.sources = tuple(sources)
        self.timeout_ms = timeout_ms
        self.poll_interval_ms = poll_interval_ms
        self.grace_ms = grace_ms
        self._clock = clock
        self._sleep = sleep

    async def poll_once(self, state: PollState) -> tuple[Optional[CompletionSignal], PollState]:
        """Evaluate every source once, in priority order."""
        for source in self.sources:
            identifier = await source.check()
            if identifier:
                signal = CompletionSignal(
                    source_kind=source.kind,
                    source_name=source.name,
                    matched_identifier=identifier,
                    detected_at=datetime.now(timezone.utc),
                )
                return signal, PollState(state.started_at, state.cycles + 1)
        return None, PollState(state.started_at, state.cycles + 1)

    async def wait(self) -> CompletionSignal:
        timeout_s = self.timeout_ms / 1000
        interval_s = self.poll_interval_ms / 1000
        state = PollState(started_at=self._clock())
        deadline = state.started_at + timeout_s

        while True:
            signal, state = await self.poll_once(state)
            if signal is not None:
                logger.info(
                    f"Completion via {signal.source_name} ({signal.source_kind.value}) "
                    f"after {state.cycles} cycle(s): {signal.matched_identifier}"
                )
                if self.grace_ms:
                    # Named grace period: let the artifact finish flushing.
                    await self._sleep(self.grace_ms / 1000)
                return signal

            now = self._clock()
            if now >= deadline:
                raise CompletionTimeoutError([s.name for s in self.sources], self.timeout_ms)
            if state.cycles % 6 == 0:
                logger.debug(f"Still waiting for completion ({state.cycles} cycles, {now - state.started_at:.0f}s)")
            await self._sleep(min(interval_s, deadline - now))


async def await_completion(
    sources: Sequence[SignalSource],
    timeout_ms: int,
    poll_interval_ms: int = 1_000,
    grace_ms: int = 0,
) -> CompletionSignal:
    return await CompletionDetector(sources, timeout_ms, poll_interval_ms, grace_ms).wait()
