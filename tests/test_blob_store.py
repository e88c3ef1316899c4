"""Tests for the Walrus HTTP client and the local blob stores."""

import hashlib
from unittest.mock import MagicMock, patch

import httpx
import pytest

from ledgerkeep.blob_store import (
    BlobNotFoundError,
    BlobStoreError,
    FileBlobStore,
    InMemoryBlobStore,
    WalrusBlobStore,
)


class FakeResponse:
    """Minimal httpx.Response stand-in."""

    def __init__(self, status_code=200, json_data=None, content=b""):
        self.status_code = status_code
        self._json = json_data or {}
        self.content = content

    def json(self):
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"{self.status_code}",
                request=httpx.Request("GET", "http://test"),
                response=self,
            )


@pytest.fixture
def walrus():
    with patch("ledgerkeep.blob_store.httpx.Client") as MockClient:
        client_instance = MagicMock()
        MockClient.return_value = client_instance
        store = WalrusBlobStore("https://pub.example.com/", "https://agg.example.com", epochs=5)
        yield store, client_instance


class TestWalrusPut:

    def test_newly_created(self, walrus):
        store, http = walrus
        http.put.return_value = FakeResponse(json_data={"newlyCreated": {"blobObject": {
            "blobId": "abc", "size": 11, "storage": {"endEpoch": 42},
        }}})
        info = store.put(b"hello world")
        assert info.blob_id == "abc"
        assert info.size == 11
        assert info.epochs == 5
        assert info.end_epoch == 42
        args, kwargs = http.put.call_args
        assert args[0] == "https://pub.example.com/v1/blobs"
        assert kwargs["params"] == {"epochs": 5}
        assert kwargs["content"] == b"hello world"

    def test_already_certified(self, walrus):
        store, http = walrus
        http.put.return_value = FakeResponse(json_data={"alreadyCertified": {
            "blobId": "abc", "endEpoch": 50,
        }})
        info = store.put(b"hello", epochs=30)
        assert info.blob_id == "abc"
        assert info.size == 5
        assert info.epochs == 30
        assert http.put.call_args[1]["params"] == {"epochs": 30}

    def test_unknown_response(self, walrus):
        store, http = walrus
        http.put.return_value = FakeResponse(json_data={"somethingElse": {}})
        with pytest.raises(BlobStoreError):
            store.put(b"hello")

    def test_missing_blob_id(self, walrus):
        store, http = walrus
        http.put.return_value = FakeResponse(json_data={"newlyCreated": {"blobObject": {}}})
        with pytest.raises(BlobStoreError):
            store.put(b"hello")

    def test_http_error(self, walrus):
        store, http = walrus
        http.put.return_value = FakeResponse(status_code=500)
        with pytest.raises(BlobStoreError):
            store.put(b"hello")


class TestWalrusGet:

    def test_get(self, walrus):
        store, http = walrus
        http.get.return_value = FakeResponse(content=b"payload")
        assert store.get("abc") == b"payload"
        http.get.assert_called_once_with("https://agg.example.com/v1/blobs/abc")

    def test_not_found(self, walrus):
        store, http = walrus
        http.get.return_value = FakeResponse(status_code=404)
        with pytest.raises(BlobNotFoundError):
            store.get("abc")

    def test_server_error(self, walrus):
        store, http = walrus
        http.get.return_value = FakeResponse(status_code=502)
        with pytest.raises(BlobStoreError) as exc_info:
            store.get("abc")
        assert not isinstance(exc_info.value, BlobNotFoundError)

    def test_transport_error(self, walrus):
        store, http = walrus
        http.get.side_effect = httpx.ConnectError("refused")
        with pytest.raises(BlobStoreError):
            store.get("abc")


class TestWalrusHead:

    @pytest.mark.parametrize("status,expected", [(200, True), (404, False), (400, False)])
    def test_status(self, walrus, status, expected):
        store, http = walrus
        http.head.return_value = FakeResponse(status_code=status)
        assert store.head("abc") is expected

    def test_server_error_raises(self, walrus):
        store, http = walrus
        http.head.return_value = FakeResponse(status_code=500)
        with pytest.raises(BlobStoreError):
            store.head("abc")


class TestInMemoryBlobStore:

    def test_content_addressed(self):
        store = InMemoryBlobStore()
        first = store.put(b"same")
        second = store.put(b"same")
        assert first.blob_id == second.blob_id == hashlib.sha256(b"same").hexdigest()
        assert store.get_text(first.blob_id) == "same"

    def test_missing(self):
        store = InMemoryBlobStore()
        assert store.head("nope") is False
        with pytest.raises(BlobNotFoundError):
            store.get("nope")


class TestFileBlobStore:

    def test_put_and_get(self, tmp_path):
        store = FileBlobStore(tmp_path / "blobs")
        info = store.put(b"hello")
        assert info.blob_id == hashlib.sha256(b"hello").hexdigest()
        assert store.get(info.blob_id) == b"hello"
        assert store.head(info.blob_id) is True
        assert (tmp_path / "blobs" / info.blob_id[:2] / info.blob_id).exists()

    def test_survives_reopen(self, tmp_path):
        info = FileBlobStore(tmp_path).put(b"persisted")
        assert FileBlobStore(tmp_path).get_text(info.blob_id) == "persisted"

    def test_missing(self, tmp_path):
        store = FileBlobStore(tmp_path)
        missing = hashlib.sha256(b"never stored").hexdigest()
        assert store.head(missing) is False
        with pytest.raises(BlobNotFoundError):
            store.get(missing)

    def test_rejects_non_hash_ids(self, tmp_path):
        store = FileBlobStore(tmp_path)
        assert store.head("../etc/passwd") is False
        with pytest.raises(BlobNotFoundError):
            store.get("../etc/passwd")

    def test_no_temp_files_left(self, tmp_path):
        store = FileBlobStore(tmp_path)
        store.put(b"a")
        store.put(b"b")
        assert not list(tmp_path.rglob("*.tmp"))
