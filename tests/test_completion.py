import asyncio

import pytest

from postbuy.completion import (
    CompletionDetector,
    DirectorySnapshot,
    EventSource,
    NewFileSource,
    PollState,
    PrefixFileSource,
    UrlSource,
    await_completion,
)
from postbuy.errors import CompletionTimeoutError
from postbuy.models import SignalKind


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedSource:
    """Satisfied once the fake clock reaches ``ready_at``."""

    kind = SignalKind.DOM

    def __init__(self, clock, ready_at, name="scripted"):
        self.clock = clock
        self.ready_at = ready_at
        self.name = name
        self.checks = 0

    async def check(self):
        self.checks += 1
        return self.name if self.clock() >= self.ready_at else None


def test_preferred_source_wins_when_both_match_in_same_cycle(tmp_path):
    (tmp_path / "sample_dexp_input_x.xlsx").write_bytes(b"input")
    snapshot = DirectorySnapshot.take(tmp_path, suffix=".xlsx")
    (tmp_path / "Export-2024.xlsx").write_bytes(b"other")
    (tmp_path / "HouseCanary-2024.xlsx").write_bytes(b"report")

    signal = asyncio.run(
        await_completion(
            [
                PrefixFileSource(snapshot, "HouseCanary-"),
                NewFileSource(snapshot, exclude_prefixes=("sample_dexp_input_",)),
            ],
            timeout_ms=1_000,
            poll_interval_ms=10,
        )
    )

    assert signal.source_kind == SignalKind.FILESYSTEM
    assert signal.source_name == "prefix:HouseCanary-"
    assert signal.matched_identifier.endswith("HouseCanary-2024.xlsx")


def test_fallback_ignores_snapshot_excluded_and_partial_files(tmp_path):
    (tmp_path / "old.xlsx").write_bytes(b"old")
    snapshot = DirectorySnapshot.take(tmp_path, suffix=".xlsx")
    (tmp_path / "sample_dexp_input_123.xlsx").write_bytes(b"input")
    (tmp_path / "report.xlsx.crdownload").write_bytes(b"partial")
    (tmp_path / "notes.txt").write_text("not a report")

    source = NewFileSource(snapshot, exclude_prefixes=("sample_dexp_input_",))
    assert asyncio.run(source.check()) is None

    (tmp_path / "report.xlsx").write_bytes(b"done")
    assert asyncio.run(source.check()) == str(tmp_path / "report.xlsx")


def test_event_source_returns_notified_identifiers_in_order():
    source = EventSource("download_event")
    source.notify("/tmp/a.xlsx")
    source.notify("/tmp/b.xlsx")

    assert asyncio.run(source.check()) == "/tmp/a.xlsx"
    assert asyncio.run(source.check()) == "/tmp/b.xlsx"
    assert asyncio.run(source.check()) is None


def test_detector_returns_within_one_poll_interval_of_signal():
    clock = FakeClock()
    source = ScriptedSource(clock, ready_at=2.35)
    detector = CompletionDetector([source], timeout_ms=10_000, poll_interval_ms=500, clock=clock, sleep=clock.sleep)

    signal = asyncio.run(detector.wait())

    assert signal.matched_identifier == "scripted"
    assert 2.35 <= clock.now <= 2.35 + 0.5


def test_detector_raises_after_timeout_without_overshooting():
    clock = FakeClock()
    source = ScriptedSource(clock, ready_at=float("inf"))
    detector = CompletionDetector([source], timeout_ms=1_200, poll_interval_ms=500, clock=clock, sleep=clock.sleep)

    with pytest.raises(CompletionTimeoutError) as excinfo:
        asyncio.run(detector.wait())

    assert isinstance(excinfo.value, TimeoutError)
    assert excinfo.value.sources == ("scripted",)
    assert clock.now == pytest.approx(1.2)
    assert clock.sleeps[-1] == pytest.approx(0.2)


def test_grace_period_applies_after_detection():
    clock = FakeClock()
    source = ScriptedSource(clock, ready_at=0)
    detector = CompletionDetector(
        [source], timeout_ms=1_000, poll_interval_ms=100, grace_ms=3_000, clock=clock, sleep=clock.sleep
    )

    asyncio.run(detector.wait())

    assert clock.sleeps == [3.0]


def test_all_sources_are_rechecked_every_cycle():
    clock = FakeClock()
    never = ScriptedSource(clock, ready_at=float("inf"), name="never")
    later = ScriptedSource(clock, ready_at=1.0, name="later")
    detector = CompletionDetector([never, later], timeout_ms=5_000, poll_interval_ms=250, clock=clock, sleep=clock.sleep)

    signal = asyncio.run(detector.wait())

    assert signal.source_name == "later"
    assert never.checks == later.checks == 5


def test_detector_requires_sources():
    with pytest.raises(ValueError):
        CompletionDetector([], timeout_ms=100)


def test_poll_once_only_advances_the_cycle_count():
    clock = FakeClock()
    detector = CompletionDetector([ScriptedSource(clock, ready_at=5)], timeout_ms=10_000, clock=clock, sleep=clock.sleep)

    signal, state = asyncio.run(detector.poll_once(PollState(started_at=2.0, cycles=3)))

    assert signal is None
    assert state == PollState(started_at=2.0, cycles=4)


def test_url_source_matches_results_view():
    class Page:
        url = "https://maps.test/boundaries/"

    page = Page()
    source = UrlSource(page, r"[?&]lat=")
    assert asyncio.run(source.check()) is None

    page.url = "https://maps.test/boundaries/?lat=39.78&lon=-89.65"
    assert asyncio.run(source.check()) == page.url
    assert source.kind == SignalKind.DOM
