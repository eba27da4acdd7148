"""
Offer-decision monitor.

Polls the property table and launches an enrichment run for every row whose
``offer_decision`` moves from empty to ``BUY``. The previous decision per row
lives in an explicit ``MonitorState`` that each cycle takes and returns; it
can be persisted as JSON between process restarts.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from loguru import logger

from postbuy.errors import RecordStoreError
from postbuy.models import AggregatedReport
from postbuy.store import RecordStore

TRIGGER_DECISION = "BUY"
_EMPTY_DECISIONS = (None, "", "NULL")

Runner = Callable[[str], Awaitable[AggregatedReport]]


@dataclass(frozen=True, slots=True)
class MonitorState:
    decisions: Mapping[str, Optional[str]] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path | str) -> "MonitorState":
        path = Path(path)
        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(f"Ignoring unreadable monitor state {path}: {exc}")
            return cls()
        return cls({str(key): value for key, value in data.items()})

    def save(self, path: Path | str) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(dict(self.decisions), indent=2, sort_keys=True), encoding="utf-8")


def detect_transitions(
    rows: Sequence[Mapping[str, Any]],
    state: MonitorState,
    target: str = TRIGGER_DECISION,
) -> tuple[List[Mapping[str, Any]], MonitorState]:
    """Rows that just moved from an empty decision to ``target``, plus the next state."""
    decisions: Dict[str, Optional[str]] = dict(state.decisions)
    triggered = []
    for row in rows:
        key = str(row["id"])
        current = row.get("offer_decision")
        if current == target and decisions.get(key) in _EMPTY_DECISIONS:
            triggered.append(row)
        decisions[key] = current
    return triggered, MonitorState(decisions)


class OfferDecisionMonitor:
    def __init__(
        self,
        store: RecordStore,
        table: str,
        runner: Runner,
        state_path: Path | str | None = None,
    ):
        self.store = store
        self.table = table
        self.runner = runner
        self.state_path = Path(state_path) if state_path else None

    async def poll_once(self, state: MonitorState) -> tuple[MonitorState, List[AggregatedReport]]:
        loop = asyncio.get_running_loop()
        rows = await loop.run_in_executor(
            None, self.store.select, self.table, ("id", "address", "offer_decision")
        )
        triggered, state = detect_transitions(rows, state)

        reports = []
        try:
            for row in triggered:
                address = (row.get("address") or "").strip()
                if not address:
                    logger.warning(f"Row {row['id']} moved to {TRIGGER_DECISION} without an address; skipping")
                    continue
                logger.info(f"Row {row['id']} moved to {TRIGGER_DECISION}; enriching '{address}'")
                try:
                    report = await self.runner(address)
                except Exception:
                    logger.exception(f"Row {row['id']}: enrichment of '{address}' failed")
                    continue
                logger.info(f"Row {row['id']}: {report.message}")
                reports.append(report)
        finally:
            if self.state_path is not None:
                state.save(self.state_path)
        return state, reports

    async def run_forever(self, interval: float = 30.0, state: Optional[MonitorState] = None) -> None:
        if state is None:
            state = MonitorState.load(self.state_path) if self.state_path else MonitorState()
        logger.info(f"Monitoring {self.table}.offer_decision every {interval}s ({len(state.decisions)} known rows)")
        while True:
            try:
                state, _ = await self.poll_once(state)
            except RecordStoreError as exc:
                logger.error(f"Poll failed, retrying next cycle: {exc}")
            except Exception:
                logger.exception("Unexpected error during poll, retrying next cycle")
            await asyncio.sleep(interval)
