"""
Resolve a raw address to rows of the property table.

The first variant (in ``generate_variants`` order) that matches at least one
row wins, and every row it matches is updated. Duplicate address rows are
expected in the store, so several matches are not an error.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from loguru import logger

from postbuy.address import generate_variants, normalize_address
from postbuy.errors import NoMatchFoundError
from postbuy.models import PropertyRecord
from postbuy.store import RecordStore


@dataclass(frozen=True, slots=True)
class MatchResult:
    rows: tuple[PropertyRecord, ...] = ()
    matched_variant: Optional[str] = None

    @property
    def is_ambiguous(self) -> bool:
        return len(self.rows) > 1

    @property
    def ids(self) -> list[Any]:
        return [row.id for row in self.rows]


class AddressMatcher:
    def match(self, raw: str, records: Iterable[PropertyRecord | Dict[str, Any]]) -> MatchResult:
        rows = [r if isinstance(r, PropertyRecord) else PropertyRecord.model_validate(r) for r in records]
        keyed = [(normalize_address(row.address), row) for row in rows]

        for variant in generate_variants(raw):
            key = normalize_address(variant)
            if not key:
                continue
            hits = tuple(row for row_key, row in keyed if row_key == key)
            if hits:
                logger.debug(f"Matched '{raw}' via variant '{variant}' ({len(hits)} row(s))")
                return MatchResult(rows=hits, matched_variant=variant)
        return MatchResult()

    def update_all(
        self,
        store: RecordStore,
        table: str,
        raw: str,
        fields: Dict[str, Any],
    ) -> MatchResult:
        """Apply ``fields`` to every row matching ``raw``."""
        records = store.select(table, ("id", "address"))
        result = self.match(raw, records)
        if not result.rows:
            raise NoMatchFoundError(raw, len(generate_variants(raw)))
        if result.is_ambiguous:
            logger.warning(f"{len(result.rows)} rows share address '{raw}'; updating all of them")
        for row in result.rows:
            store.update(table, row.id, fields)
        logger.info(f"Updated {len(result.rows)} row(s) in {table} for '{raw}': {sorted(fields)}")
        return result
