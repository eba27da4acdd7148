import re
from types import SimpleNamespace

import pytest

from postbuy.errors import RecordStoreError, UploadError
from postbuy.store import SupabaseArtifactStorage, SupabaseRecordStore, timestamped_name


class FakeQuery:
    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.calls = []

    def select(self, columns):
        self.calls.append(("select", columns))
        return self

    def update(self, fields):
        self.calls.append(("update", fields))
        return self

    def eq(self, column, value):
        self.calls.append(("eq", column, value))
        return self

    def execute(self):
        if self.client.fail:
            raise RuntimeError("connection reset")
        self.client.executed.append((self.table, self.calls))
        return SimpleNamespace(data=self.client.rows)


class FakeBucket:
    def __init__(self, client, bucket):
        self.client = client
        self.bucket = bucket

    def upload(self, path, file, file_options):
        if self.client.fail:
            raise RuntimeError("The resource already exists")
        self.client.uploaded.append((self.bucket, path, file, file_options))

    def get_public_url(self, path):
        return f"https://db.test/storage/v1/object/public/{self.bucket}/{path}?"


class FakeClient:
    def __init__(self, rows=None, fail=False):
        self.rows = rows or []
        self.fail = fail
        self.executed = []
        self.uploaded = []
        self.storage = SimpleNamespace(from_=lambda bucket: FakeBucket(self, bucket))

    def table(self, name):
        return FakeQuery(self, name)


def test_timestamped_names_are_unique_and_well_formed():
    names = {timestamped_name("sp_map", ".png") for _ in range(50)}
    assert len(names) == 50
    for name in names:
        assert re.fullmatch(r"sp_map_\d{8}T\d{12}Z_[0-9a-f]{6}\.png", name)


def test_record_store_select_and_update():
    client = FakeClient(rows=[{"id": 1, "address": "1 A St"}])
    store = SupabaseRecordStore(client)

    assert store.select("property_detail", ("id", "address")) == [{"id": 1, "address": "1 A St"}]
    store.update("property_detail", 1, {"x_data": "v"})

    assert client.executed[0] == ("property_detail", [("select", "id,address")])
    assert client.executed[1] == ("property_detail", [("update", {"x_data": "v"}), ("eq", "id", 1)])


def test_record_store_errors_are_wrapped():
    store = SupabaseRecordStore(FakeClient(fail=True))
    with pytest.raises(RecordStoreError, match="connection reset"):
        store.select("property_detail", ("id",))
    with pytest.raises(RecordStoreError):
        store.update("property_detail", 1, {})


def test_artifact_upload_is_not_upserting():
    client = FakeClient()
    storage = SupabaseArtifactStorage(client)

    storage.upload("sexual-predator-maps", "sp_map_1.png", b"png", "image/png")

    bucket, path, data, options = client.uploaded[0]
    assert (bucket, path, data) == ("sexual-predator-maps", "sp_map_1.png", b"png")
    assert options == {"content-type": "image/png", "upsert": "false"}
    assert storage.public_url("sexual-predator-maps", "sp_map_1.png").endswith("/sexual-predator-maps/sp_map_1.png")


def test_artifact_upload_failure_raises_upload_error():
    with pytest.raises(UploadError, match="already exists"):
        SupabaseArtifactStorage(FakeClient(fail=True)).upload("b", "n.png", b"", "image/png")
