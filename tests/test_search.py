"""Tests for chunking, the vector index and document ingestion."""

import pytest

from ledgerkeep.access import InMemoryPolicyStore
from ledgerkeep.index_store import IndexStore
from ledgerkeep.items import ItemManager
from ledgerkeep.lease import LeaseRenewer
from ledgerkeep.search import (
    DocumentIngestor,
    VectorIndex,
    chunk_text,
    document_id_for,
)
from ledgerkeep.types import Purpose


class TestChunking:

    def test_short_text_is_one_chunk(self):
        assert chunk_text("hello", 1000, 200) == ["hello"]

    def test_windows_overlap(self):
        text = "".join(chr(ord("a") + i % 26) for i in range(2500))
        chunks = chunk_text(text, 1000, 200)
        assert len(chunks) == 4
        assert chunks[0][-200:] == chunks[1][:200]

    def test_overlap_must_be_smaller(self):
        with pytest.raises(ValueError):
            chunk_text("abc", 100, 100)

    def test_empty_text(self):
        assert chunk_text("", 10, 2) == [""]


class TestVectorIndex:

    def test_exact_text_ranks_first(self, mock_embedding_provider):
        index = VectorIndex(mock_embedding_provider)
        index.add_texts(["alpha", "beta", "gamma"], [{"n": 1}, {"n": 2}, {"n": 3}])
        results = index.similarity_search("beta", 2)
        assert len(results) == 2
        content, score, meta = results[0]
        assert content == "beta"
        assert score == pytest.approx(1.0)
        assert meta == {"n": 2}
        assert results[0][1] >= results[1][1]

    def test_length_mismatch(self, mock_embedding_provider):
        with pytest.raises(ValueError):
            VectorIndex(mock_embedding_provider).add_texts(["a"], [])

    def test_remove_where(self, mock_embedding_provider):
        index = VectorIndex(mock_embedding_provider)
        index.add_texts(["a", "b", "c"], [{"doc": "x"}, {"doc": "y"}, {"doc": "x"}])
        assert index.remove_where("doc", "x") == 2
        assert len(index) == 1

    def test_save_and_load(self, mock_embedding_provider, tmp_path):
        index = VectorIndex(mock_embedding_provider)
        index.add_texts(["a", "b"], [{"i": 0}, {"i": 1}])
        path = tmp_path / "vectors.json"
        index.save(path)

        loaded = VectorIndex.load(path, mock_embedding_provider)
        assert len(loaded) == 2
        assert loaded.similarity_search("a", 1)[0][2] == {"i": 0}

    def test_load_missing_is_empty(self, mock_embedding_provider, tmp_path):
        assert len(VectorIndex.load(tmp_path / "none.json", mock_embedding_provider)) == 0

    def test_load_rejects_newer_version(self, mock_embedding_provider, tmp_path):
        path = tmp_path / "vectors.json"
        path.write_text('{"version": 99, "entries": []}')
        with pytest.raises(ValueError):
            VectorIndex.load(path, mock_embedding_provider)


@pytest.fixture
def documents(registry, blobs):
    index = IndexStore(registry, blobs, Purpose.DOCS)
    return ItemManager(index, blobs, LeaseRenewer(index, blobs))


@pytest.fixture
def ingestor(documents, mock_embedding_provider):
    return DocumentIngestor(
        documents,
        VectorIndex(mock_embedding_provider),
        policies=InMemoryPolicyStore(),
        chunk_size=100,
        chunk_overlap=20,
    )


class TestIngestion:

    def test_document_id_is_stable(self):
        assert document_id_for("0xp1", "a.md", "x") == document_id_for("0xp1", "a.md", "x")
        assert document_id_for("0xp1", "a.md", "x") != document_id_for("0xp2", "a.md", "x")
        assert document_id_for("0xp1", "a.md", "x").startswith("doc-")

    def test_ingest_records_item_and_chunks(self, ingestor, documents, blobs):
        content = "lorem ipsum " * 30
        item = ingestor.ingest("0xp1", "notes.md", content)

        assert blobs.get(item.content_blob_id) == content.encode()
        stored = documents.index.get_item("0xp1", item.item_id)
        assert stored.extra["filename"] == "notes.md"
        assert stored.extra["chunk_count"] > 1

        hits = ingestor._vectors.similarity_search("lorem", 50)
        assert len(hits) == stored.extra["chunk_count"]
        meta = hits[0][2]
        assert meta["blob_id"] == item.content_blob_id
        assert meta["owner"] == "0xp1"
        assert meta["resource_id"] == item.item_id
        assert meta["filename"] == "notes.md"

    def test_public_ingest_creates_no_policy(self, ingestor):
        item = ingestor.ingest("0xp1", "open.md", "shared text")
        assert ingestor._policies.get_policy(item.item_id) is None

    def test_private_ingest_creates_policy(self, ingestor):
        item = ingestor.ingest("0xp1", "secret.md", "secret text", private=True, allowed=["0xp2"])
        policy = ingestor._policies.get_policy(item.item_id)
        assert policy.owner == "0xp1"
        assert policy.is_public is False
        assert policy.allowed_principals == frozenset({"0xp2"})

    def test_private_requires_policy_store(self, documents, mock_embedding_provider):
        ingestor = DocumentIngestor(documents, VectorIndex(mock_embedding_provider))
        with pytest.raises(ValueError):
            ingestor.ingest("0xp1", "secret.md", "x", private=True)

    def test_requires_filename(self, ingestor):
        with pytest.raises(ValueError):
            ingestor.ingest("0xp1", "", "x")

    def test_reingest_replaces_chunks(self, ingestor):
        ingestor.ingest("0xp1", "a.md", "alpha notes")
        for _ in range(3):
            ingestor.ingest("0xp1", "b.md", "beta notes")
        assert len(ingestor._vectors) == 2

        hits = ingestor._vectors.similarity_search("notes", 3)
        assert {meta["filename"] for _, _, meta in hits} == {"a.md", "b.md"}

    def test_remove_purges_chunks(self, ingestor, documents):
        kept = ingestor.ingest("0xp1", "a.md", "alpha notes")
        gone = ingestor.ingest("0xp1", "b.md", "beta notes")

        assert ingestor.remove("0xp1", gone.item_id) is True
        assert documents.index.get_item("0xp1", gone.item_id) is None
        hits = ingestor._vectors.similarity_search("beta notes", 10)
        assert [meta["resource_id"] for _, _, meta in hits] == [kept.item_id]

    def test_remove_unknown_document(self, ingestor):
        ingestor.ingest("0xp1", "a.md", "alpha notes")
        assert ingestor.remove("0xp1", "doc-missing") is False
        assert ingestor.remove("0xp2", "doc-missing") is False
        assert len(ingestor._vectors) == 1
