"""Tests for access evaluation and policy stores."""

from unittest.mock import MagicMock

import pytest

from ledgerkeep.access import InMemoryPolicyStore, SuiPolicyStore, check_access
from ledgerkeep.ledger import LedgerError
from ledgerkeep.types import AccessPolicy


@pytest.fixture
def policies():
    return InMemoryPolicyStore()


class TestCheckAccess:

    def test_no_policy_means_public(self):
        assert check_access(None, "0xanyone") is True

    def test_private_denies_stranger(self):
        policy = AccessPolicy("doc", owner="0xp1", allowed_principals=frozenset({"0xp2"}))
        assert check_access(policy, "0xp1") is True
        assert check_access(policy, "0xp2") is True
        assert check_access(policy, "0xp3") is False


class TestInMemoryPolicyStore:

    def test_create_and_get(self, policies):
        policies.create_policy("doc", "0xp1", allowed=["0xp2"])
        policy = policies.get_policy("doc")
        assert policy.owner == "0xp1"
        assert policy.allowed_principals == frozenset({"0xp2"})
        assert policies.get_policy("other") is None

    def test_grant_and_revoke(self, policies):
        policies.create_policy("doc", "0xp1")
        policies.grant_access("doc", "0xp2", granted_by="0xp1")
        assert check_access(policies.get_policy("doc"), "0xp2")
        policies.revoke_access("doc", "0xp2", revoked_by="0xp1")
        assert not check_access(policies.get_policy("doc"), "0xp2")

    def test_only_owner_can_grant(self, policies):
        policies.create_policy("doc", "0xp1")
        with pytest.raises(PermissionError):
            policies.grant_access("doc", "0xp3", granted_by="0xp3")
        with pytest.raises(PermissionError):
            policies.revoke_access("doc", "0xp1", revoked_by="0xp2")

    def test_grant_without_policy(self, policies):
        with pytest.raises(KeyError):
            policies.grant_access("doc", "0xp2", granted_by="0xp1")

    def test_cannot_take_over_policy(self, policies):
        policies.create_policy("doc", "0xp1")
        with pytest.raises(PermissionError):
            policies.create_policy("doc", "0xp2", is_public=True)

    def test_set_public(self, policies):
        policies.create_policy("doc", "0xp1")
        policies.set_public("doc", True, requested_by="0xp1")
        assert check_access(policies.get_policy("doc"), "0xanyone")

    def test_listing(self, policies):
        policies.create_policy("a", "0xp1", allowed=["0xp2"])
        policies.create_policy("b", "0xp1")
        policies.create_policy("c", "0xp3", is_public=True)
        assert policies.owned_resources("0xp1") == ["a", "b"]
        assert policies.accessible_resources("0xp2") == ["a", "c"]

    def test_save_and_load(self, policies, tmp_path):
        policies.create_policy("a", "0xp1", allowed=["0xp2", "0xp4"])
        policies.create_policy("b", "0xp3", is_public=True)
        path = tmp_path / "policies.json"
        policies.save(path)

        loaded = InMemoryPolicyStore.load(path)
        assert loaded.get_policy("a") == policies.get_policy("a")
        assert loaded.get_policy("b").is_public is True

    def test_load_missing_file(self, tmp_path):
        assert InMemoryPolicyStore.load(tmp_path / "none.json").get_policy("a") is None


class TestSuiPolicyStore:

    def test_reads_policy_object(self):
        rpc = MagicMock()
        rpc.call.return_value = {
            "data": {
                "objectId": "0xd0c",
                "content": {
                    "dataType": "moveObject",
                    "fields": {
                        "owner": "0xp1",
                        "is_public": False,
                        "allowed_users": ["0xp2"],
                    },
                },
            },
        }
        policy = SuiPolicyStore(rpc).get_policy("0xd0c")
        assert policy == AccessPolicy("0xd0c", "0xp1", False, frozenset({"0xp2"}))
        method, params = rpc.call.call_args[0]
        assert method == "sui_getObject"
        assert params[0] == "0xd0c"
        assert params[1]["showContent"] is True

    def test_missing_object_means_no_policy(self):
        rpc = MagicMock()
        rpc.call.return_value = {"error": {"code": "notExists", "object_id": "0xd0c"}}
        assert SuiPolicyStore(rpc).get_policy("0xd0c") is None

    def test_unrecognized_object_raises(self):
        rpc = MagicMock()
        rpc.call.return_value = {"data": {"content": {"fields": {"name": "coin"}}}}
        with pytest.raises(LedgerError):
            SuiPolicyStore(rpc).get_policy("0xd0c")

    def test_other_error_raises(self):
        rpc = MagicMock()
        rpc.call.return_value = {"error": {"code": "displayError"}}
        with pytest.raises(LedgerError):
            SuiPolicyStore(rpc).get_policy("0xd0c")

    def test_non_object_id_has_no_policy(self):
        rpc = MagicMock()
        rpc.call.side_effect = LedgerError("Invalid params")
        store = SuiPolicyStore(rpc)
        assert store.get_policy("doc-63444c7d105619e2") is None
        assert check_access(store.get_policy("doc-63444c7d105619e2"), "0xanyone")
        rpc.call.assert_not_called()
