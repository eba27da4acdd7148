import pytest

from postbuy.errors import NoMatchFoundError
from postbuy.matcher import AddressMatcher
from postbuy.models import PropertyRecord


class FakeStore:
    def __init__(self, rows):
        self.rows = rows
        self.updates = []

    def select(self, table, columns):
        return [{c: row.get(c) for c in columns} for row in self.rows]

    def update(self, table, row_id, fields):
        self.updates.append((table, row_id, dict(fields)))


def test_street_suffix_variant_matches_stored_abbreviation():
    records = [
        {"id": 1, "address": "123 Main St, Springfield, IL 62704"},
        {"id": 2, "address": "500 Oak Ave, Springfield, IL 62704"},
    ]
    result = AddressMatcher().match("123 Main Street, Springfield, IL 62704", records)

    assert [row.id for row in result.rows] == [1]
    assert result.matched_variant == "123 Main St, Springfield, IL 62704"
    assert not result.is_ambiguous


def test_raw_variant_wins_over_later_variants():
    raw = "123 Main Street, Springfield, IL 62704"
    exact = [PropertyRecord(id="exact", address=raw)]
    abbreviated = [PropertyRecord(id="abbrev", address="123 Main St, Springfield, IL 62704")]

    matcher = AddressMatcher()
    both = matcher.match(raw, abbreviated + exact)
    assert [row.id for row in both.rows] == ["exact"]
    assert both.matched_variant == raw

    only_abbrev = matcher.match(raw, abbreviated)
    assert [row.id for row in only_abbrev.rows] == ["abbrev"]


def test_match_is_insensitive_to_case_and_commas():
    records = [{"id": 7, "address": "123 MAIN ST SPRINGFIELD IL 62704"}]
    result = AddressMatcher().match("123 main st, springfield, il 62704", records)
    assert result.ids == [7]


def test_no_match_returns_empty_result():
    result = AddressMatcher().match("1 Nowhere Rd", [{"id": 1, "address": "2 Somewhere Ln"}])
    assert result.rows == ()
    assert result.matched_variant is None


def test_update_all_writes_every_duplicate_row():
    store = FakeStore(
        [
            {"id": 1, "address": "123 Main St, Springfield, IL 62704"},
            {"id": 2, "address": "123 main st springfield il 62704"},
            {"id": 3, "address": "9 Elm Ave, Springfield, IL 62704"},
        ]
    )
    fields = {"house_canary_data": ["https://x/report.xlsx"], "house_canary_collection_status": "complete"}

    result = AddressMatcher().update_all(store, "property_detail", "123 Main St, Springfield, IL 62704", fields)

    assert result.is_ambiguous
    assert sorted(row_id for _, row_id, _ in store.updates) == [1, 2]
    assert all(update == fields for _, _, update in store.updates)
    assert all(table == "property_detail" for table, _, _ in store.updates)


def test_update_all_raises_when_nothing_matches():
    store = FakeStore([{"id": 1, "address": "9 Elm Ave"}])
    with pytest.raises(NoMatchFoundError, match="No matching address found"):
        AddressMatcher().update_all(store, "property_detail", "1 Nowhere Rd", {"x": 1})
    assert store.updates == []
