"""Tests for the blob store backends."""

import hashlib
from pathlib import Path

import pytest
from botocore.exceptions import ClientError

from config import Settings
from services.blob_store import (
    BlobStoreError,
    LocalBlobStore,
    S3BlobStore,
    StaleWriteError,
    build_blob_store,
)


class TestLocalBlobStore:
    def test_put_and_get(self, store):
        info = store.put("galleries/g1/web-1.jpg", b"jpeg-bytes", content_type="image/jpeg")
        assert info.size == len(b"jpeg-bytes")
        assert info.etag == hashlib.md5(b"jpeg-bytes").hexdigest()
        assert info.url == "http://testserver/blobs/galleries/g1/web-1.jpg"
        assert store.get("galleries/g1/web-1.jpg") == (b"jpeg-bytes", info.etag)

    def test_get_missing_returns_none(self, store):
        assert store.get("galleries/nope/metadata.json") is None

    def test_if_none_match_rejects_existing(self, store):
        store.put("a/metadata.json", b"{}", if_none_match=True)
        with pytest.raises(StaleWriteError):
            store.put("a/metadata.json", b"{}", if_none_match=True)

    def test_if_match_checks_current_etag(self, store):
        first = store.put("a/metadata.json", b'{"v": 1}')
        second = store.put("a/metadata.json", b'{"v": 2}', if_match=first.etag)
        with pytest.raises(StaleWriteError):
            store.put("a/metadata.json", b'{"v": 3}', if_match=first.etag)
        assert store.get("a/metadata.json") == (b'{"v": 2}', second.etag)

    def test_if_match_on_missing_key(self, store):
        with pytest.raises(StaleWriteError):
            store.put("a/metadata.json", b"{}", if_match="abc")

    def test_json_helpers(self, store):
        store.put_json("a/doc.json", {"name": "見返り美人", "n": 1})
        document, etag = store.get_json("a/doc.json")
        assert document == {"name": "見返り美人", "n": 1}
        assert etag

    def test_list_by_prefix(self, store):
        for key in ("galleries/g1/metadata.json", "galleries/g1/web-1.jpg", "galleries/g2/metadata.json", "other/x"):
            store.put(key, b"x")
        keys = [b.key for b in store.list("galleries/g1/")]
        assert keys == ["galleries/g1/metadata.json", "galleries/g1/web-1.jpg"]
        assert len(store.list("galleries/")) == 3
        assert len(store.list("galleries/", limit=2)) == 2

    def test_list_walks_only_prefix_directory(self, store, monkeypatch):
        for key in ("galleries/g1/web-1.jpg", "galleries/g2/web-1.jpg", "other/x"):
            store.put(key, b"x")
        walked = []
        real_rglob = Path.rglob

        def recording_rglob(self, *args, **kwargs):
            walked.append(self)
            return real_rglob(self, *args, **kwargs)

        monkeypatch.setattr(Path, "rglob", recording_rglob)

        assert [b.key for b in store.list("galleries/g1/")] == ["galleries/g1/web-1.jpg"]
        assert [b.key for b in store.list("galleries/g")] == ["galleries/g1/web-1.jpg", "galleries/g2/web-1.jpg"]
        assert walked == [store.root / "galleries" / "g1", store.root / "galleries"]

    def test_list_missing_prefix_directory(self, store):
        store.put("galleries/g1/web-1.jpg", b"x")
        assert store.list("galleries/nope/") == []
        assert [b.key for b in store.list("")] == ["galleries/g1/web-1.jpg"]

    def test_delete(self, store):
        store.put("a/b.jpg", b"x")
        store.delete("a/b.jpg")
        assert store.get("a/b.jpg") is None
        store.delete("a/b.jpg")

    @pytest.mark.parametrize("key", ["../outside", "/etc/passwd", "a/../../b", "a\\b", ""])
    def test_rejects_unsafe_keys(self, store, key):
        with pytest.raises(BlobStoreError):
            store.put(key, b"x")
        assert store.open_path(key) is None

    def test_open_path(self, store):
        store.put("galleries/g1/print-1.jpg", b"x")
        assert store.open_path("galleries/g1/print-1.jpg").read_bytes() == b"x"
        assert store.open_path("galleries/g1/print-2.jpg") is None


class FakeS3:
    """Minimal boto3 S3 client double."""

    def __init__(self, put_error=None, get_error=None):
        self.put_error = put_error
        self.get_error = get_error
        self.put_calls = []

    def put_object(self, **params):
        self.put_calls.append(params)
        if self.put_error:
            raise self.put_error
        return {"ETag": '"etag-1"'}

    def get_object(self, **params):
        if self.get_error:
            raise self.get_error
        raise AssertionError("unexpected call")


def _client_error(code: str, status: int, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}}, operation)


class TestS3BlobStore:
    @pytest.fixture
    def s3_store(self):
        return S3BlobStore(
            bucket="omoide-test",
            region="us-east-1",
            access_key="test",
            secret_key="test",
            public_base_url="https://cdn.example.com",
        )

    def test_conditional_headers(self, s3_store):
        s3_store.client = FakeS3()
        info = s3_store.put("galleries/g1/metadata.json", b"{}", content_type="application/json", if_match='"e1"')
        s3_store.put("galleries/g2/metadata.json", b"{}", if_none_match=True)
        first, second = s3_store.client.put_calls
        assert first["IfMatch"] == '"e1"' and "IfNoneMatch" not in first
        assert second["IfNoneMatch"] == "*" and "IfMatch" not in second
        assert info.etag == '"etag-1"'
        assert info.url == "https://cdn.example.com/galleries/g1/metadata.json"

    @pytest.mark.parametrize("code, status", [("PreconditionFailed", 412), ("ConditionalRequestConflict", 409)])
    def test_failed_precondition_raises_stale_write(self, s3_store, code, status):
        s3_store.client = FakeS3(put_error=_client_error(code, status, "PutObject"))
        with pytest.raises(StaleWriteError):
            s3_store.put("galleries/g1/metadata.json", b"{}", if_match='"e1"')

    def test_other_errors_propagate(self, s3_store):
        s3_store.client = FakeS3(put_error=_client_error("AccessDenied", 403, "PutObject"))
        with pytest.raises(ClientError):
            s3_store.put("galleries/g1/metadata.json", b"{}")

    def test_missing_key_returns_none(self, s3_store):
        s3_store.client = FakeS3(get_error=_client_error("NoSuchKey", 404, "GetObject"))
        assert s3_store.get("galleries/g1/metadata.json") is None

    def test_default_url(self):
        store = S3BlobStore(bucket="omoide-test", region="eu-west-1", access_key="test", secret_key="test")
        assert store.url_for("galleries/g1/web-1.jpg") == (
            "https://omoide-test.s3.eu-west-1.amazonaws.com/galleries/g1/web-1.jpg"
        )


def test_build_blob_store_defaults_to_local(tmp_path):
    store = build_blob_store(Settings(blob_bucket=None, blob_dir=str(tmp_path / "b"), public_base_url="http://x"))
    assert isinstance(store, LocalBlobStore)
    assert store.root == (tmp_path / "b").resolve()
