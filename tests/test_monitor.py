import asyncio
import json

import pytest

import postbuy.monitor as monitor_module
from postbuy.models import AggregatedReport, WorkerResult
from postbuy.monitor import MonitorState, OfferDecisionMonitor, detect_transitions


class FakeStore:
    def __init__(self, rows):
        self.rows = rows

    def select(self, table, columns):
        return [{c: row.get(c) for c in columns} for row in self.rows]


def make_runner(calls):
    async def runner(address):
        calls.append(address)
        return AggregatedReport(
            address=address,
            results={"a": WorkerResult(success=True, message="ok", payload={})},
        )

    return runner


def test_only_empty_to_buy_transitions_trigger():
    state = MonitorState({"1": None, "2": "BUY", "3": "PASS", "4": "NULL"})
    rows = [
        {"id": 1, "address": "1 A St", "offer_decision": "BUY"},
        {"id": 2, "address": "2 B St", "offer_decision": "BUY"},
        {"id": 3, "address": "3 C St", "offer_decision": "BUY"},
        {"id": 4, "address": "4 D St", "offer_decision": "BUY"},
        {"id": 5, "address": "5 E St", "offer_decision": None},
    ]

    triggered, new_state = detect_transitions(rows, state)

    assert [row["id"] for row in triggered] == [1, 4]
    assert new_state.decisions == {"1": "BUY", "2": "BUY", "3": "BUY", "4": "BUY", "5": None}
    assert state.decisions["1"] is None


def test_unknown_row_already_at_buy_triggers_once():
    rows = [{"id": 7, "address": "7 G St", "offer_decision": "BUY"}]

    first, state = detect_transitions(rows, MonitorState())
    second, _ = detect_transitions(rows, state)

    assert len(first) == 1
    assert second == []


def test_poll_once_runs_enrichment_and_persists_state(tmp_path):
    state_file = tmp_path / "states.json"
    calls = []
    store = FakeStore(
        [
            {"id": 1, "address": "1 A St", "offer_decision": "BUY"},
            {"id": 2, "address": "", "offer_decision": "BUY"},
            {"id": 3, "address": "3 C St", "offer_decision": None},
        ]
    )
    monitor = OfferDecisionMonitor(store, "property_detail", make_runner(calls), state_path=state_file)

    state, reports = asyncio.run(monitor.poll_once(MonitorState()))

    assert calls == ["1 A St"]
    assert len(reports) == 1
    assert json.loads(state_file.read_text()) == {"1": "BUY", "2": "BUY", "3": None}

    _, reports = asyncio.run(monitor.poll_once(MonitorState.load(state_file)))
    assert reports == []
    assert calls == ["1 A St"]


def test_state_load_tolerates_missing_or_corrupt_file(tmp_path):
    assert MonitorState.load(tmp_path / "missing.json").decisions == {}
    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text("{not json")
    assert MonitorState.load(corrupt).decisions == {}


def test_failed_enrichment_does_not_stop_the_cycle(tmp_path):
    state_file = tmp_path / "states.json"
    calls = []
    succeed = make_runner(calls)

    async def runner(address):
        if address == "1 A St":
            calls.append(address)
            raise RuntimeError("browser crashed")
        return await succeed(address)

    store = FakeStore(
        [
            {"id": 1, "address": "1 A St", "offer_decision": "BUY"},
            {"id": 2, "address": "2 B St", "offer_decision": "BUY"},
        ]
    )
    monitor = OfferDecisionMonitor(store, "property_detail", runner, state_path=state_file)

    state, reports = asyncio.run(monitor.poll_once(MonitorState()))

    assert calls == ["1 A St", "2 B St"]
    assert [report.address for report in reports] == ["2 B St"]
    assert json.loads(state_file.read_text()) == {"1": "BUY", "2": "BUY"}


def test_run_forever_survives_unexpected_poll_errors(monkeypatch):
    class Stop(Exception):
        pass

    class BrokenStore:
        selects = 0

        def select(self, table, columns):
            self.selects += 1
            raise RuntimeError("schema changed")

    async def sleep(seconds):
        raise Stop()

    store = BrokenStore()
    monitor = OfferDecisionMonitor(store, "property_detail", make_runner([]))
    monkeypatch.setattr(monitor_module.asyncio, "sleep", sleep)

    with pytest.raises(Stop):
        asyncio.run(monitor.run_forever(interval=1, state=MonitorState()))
    assert store.selects == 1
