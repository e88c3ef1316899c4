"""Tests for LedgerKeeper wiring over a real store directory."""

import logging
from unittest.mock import MagicMock

import pytest

from ledgerkeep.access import SuiPolicyStore
from ledgerkeep.api import POLICY_FILE, VECTOR_FILE, LedgerKeeper
from ledgerkeep.ledger import LedgerError
from ledgerkeep.query import QueryOutcome
from ledgerkeep.types import DAY_MS, Purpose, Tier, now_ms

BLOB = "a" * 64


@pytest.fixture
def keeper(tmp_path, mock_embedding_provider, mock_generator):
    kp = LedgerKeeper(tmp_path, embedding=mock_embedding_provider, generator=mock_generator)
    yield kp
    kp.close()


def reopen(tmp_path, mock_embedding_provider, mock_generator) -> LedgerKeeper:
    return LedgerKeeper(tmp_path, embedding=mock_embedding_provider, generator=mock_generator)


class TestRegistry:

    def test_store_and_resolve(self, keeper):
        keeper.store("0xalice", "chat", BLOB)
        assert keeper.resolve("0xalice", Purpose.CHAT) == BLOB
        assert keeper.resolve("0xalice", "docs") is None
        assert keeper.lookup("0xalice", "chat").tier == Tier.MEMORY

    def test_local_tier_survives_restart(self, tmp_path, mock_embedding_provider, mock_generator):
        with reopen(tmp_path, mock_embedding_provider, mock_generator) as first:
            first.store("0xalice", "docs", BLOB)
        with reopen(tmp_path, mock_embedding_provider, mock_generator) as second:
            entry = second.lookup("0xalice", "docs")
            assert entry.blob_id == BLOB
            assert entry.tier == Tier.LOCAL

    def test_registry_purpose_has_no_items(self, keeper):
        with pytest.raises(ValueError):
            keeper.items_for(Purpose.REGISTRY)

    def test_defaults_from_config(self, keeper, tmp_path):
        assert keeper.config.ledger.name == "memory"
        assert (tmp_path / "ledgerkeep.toml").exists()
        assert (tmp_path / "ledgerkeep-ops.log").exists()


class TestItems:

    def test_chats_and_documents_are_separate(self, keeper):
        keeper.chats.create_item("0xalice", "c1", "Chat", "hi")
        assert [i.item_id for i in keeper.list_items("0xalice", "chat")] == ["c1"]
        assert keeper.list_items("0xalice", "docs") == []

    def test_renew_due(self, keeper):
        now = now_ms()
        keeper.chats.create_item("0xalice", "due", "Due", "a", now=now - 25 * DAY_MS)
        keeper.chats.index.update_item(
            "0xalice", "due", {"last_activity": now - DAY_MS}, touch=False,
        )
        keeper.chats.create_item("0xalice", "fresh", "Fresh", "b")
        assert keeper.renew_due("0xalice", "chat", now) == ["due"]
        renewed = keeper.chats.index.get_item("0xalice", "due")
        assert renewed.blob_expires_at == now + 30 * DAY_MS


class TestDocuments:

    def test_private_document_gate(self, keeper, mock_generator, tmp_path):
        doc = keeper.ingest("0xp1", "plan.md", "The launch is in May.", private=True, allowed=["0xp2"])
        assert (tmp_path / VECTOR_FILE).exists()
        assert (tmp_path / POLICY_FILE).exists()

        assert keeper.ask("0xp2", "When is the launch?").answered
        denied = keeper.ask("0xp3", "When is the launch?")
        assert denied.outcome == QueryOutcome.NO_ACCESSIBLE_SOURCES
        assert denied.denied_count == 1
        assert len(mock_generator.calls) == 1

        keeper.grant(doc.item_id, "0xp3", "0xp1")
        assert keeper.ask("0xp3", "When is the launch?").answered

        keeper.revoke(doc.item_id, "0xp3", "0xp1")
        assert not keeper.ask("0xp3", "When is the launch?").answered

    def test_only_owner_changes_access(self, keeper):
        doc = keeper.ingest("0xp1", "plan.md", "text", private=True)
        with pytest.raises(PermissionError):
            keeper.grant(doc.item_id, "0xp3", "0xp3")

    def test_state_survives_restart(self, tmp_path, mock_embedding_provider, mock_generator):
        with reopen(tmp_path, mock_embedding_provider, mock_generator) as first:
            first.ingest("0xp1", "memo.md", "Quarterly numbers are up.", private=True)
        with reopen(tmp_path, mock_embedding_provider, mock_generator) as second:
            assert second.ask("0xp1", "numbers?").answered
            assert not second.ask("0xp2", "numbers?").answered
            assert [i.extra["filename"] for i in second.list_items("0xp1", "docs")] == ["memo.md"]

    def test_ask_empty_store(self, keeper):
        assert keeper.ask("0xp1", "anything?").outcome == QueryOutcome.NO_SOURCES

    def test_public_document_with_onchain_policies(self, tmp_path, mock_embedding_provider, mock_generator):
        rpc = MagicMock()
        rpc.call.side_effect = LedgerError("Invalid params")
        kp = LedgerKeeper(
            tmp_path,
            policies=SuiPolicyStore(rpc),
            embedding=mock_embedding_provider,
            generator=mock_generator,
        )
        try:
            kp.ingest("0xp1", "memo.md", "Quarterly numbers are up.")
            result = kp.ask("0xp1", "numbers?")
            assert result.answered
            assert result.denied_count == 0
            assert kp.ask("0xp2", "numbers?").answered
        finally:
            kp.close()

    def test_reingest_does_not_crowd_out_others(self, keeper):
        keeper.ingest("0xp1", "a.md", "alpha")
        for _ in range(3):
            keeper.ingest("0xp1", "b.md", "beta")
        result = keeper.ask("0xp1", "anything?", top_k=3)
        assert sorted(s.filename for s in result.sources) == ["a.md", "b.md"]

    def test_deleted_document_stops_answering(self, tmp_path, mock_embedding_provider, mock_generator):
        with reopen(tmp_path, mock_embedding_provider, mock_generator) as first:
            doc = first.ingest("0xp1", "memo.md", "Quarterly numbers are up.")
            assert first.delete_document("0xp1", doc.item_id) is True
            assert first.delete_document("0xp1", doc.item_id) is False
            assert first.ask("0xp1", "numbers?").outcome == QueryOutcome.NO_SOURCES
        with reopen(tmp_path, mock_embedding_provider, mock_generator) as second:
            assert second.list_items("0xp1", "docs") == []
            assert second.ask("0xp1", "numbers?").outcome == QueryOutcome.NO_SOURCES

    def test_onchain_policies_are_read_only(self, tmp_path, mock_embedding_provider, mock_generator):
        kp = LedgerKeeper(
            tmp_path,
            policies=SuiPolicyStore(MagicMock()),
            embedding=mock_embedding_provider,
            generator=mock_generator,
        )
        try:
            with pytest.raises(RuntimeError):
                kp.grant("0xdoc", "0xp2", "0xp1")
            with pytest.raises(ValueError):
                kp.ingest("0xp1", "plan.md", "text", private=True)
        finally:
            kp.close()


class TestLifecycle:

    def test_close_is_idempotent_and_detaches_log(self, tmp_path, mock_embedding_provider, mock_generator):
        kp = reopen(tmp_path, mock_embedding_provider, mock_generator)
        handler = kp._ops_log_handler
        kp.close()
        kp.close()
        assert handler not in logging.getLogger("ledgerkeep").handlers
