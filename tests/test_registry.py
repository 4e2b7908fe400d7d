"""
merkledrop/tests/test_registry.py

Unit tests for AirdropRegistry and the deposit boundary check.
"""

import pytest

from merkledrop.errors import (
    AlreadyClaimedError,
    DepositRequiredError,
    InvalidAdministratorError,
    UnauthorizedError,
)
from merkledrop.protocol.registry import AirdropRegistry, require_attached_deposit

OWNER = "owner.testnet"
LEDGER = "token.testnet"
ROOT = "ab" * 32


@pytest.fixture
def registry():
    return AirdropRegistry(OWNER, LEDGER, ROOT)


class TestConstruction:
    """Tests for registry construction."""

    def test_initial_state(self, registry):
        assert registry.administrator == OWNER
        assert registry.ledger_id == LEDGER
        assert registry.read_root() == ROOT
        assert registry.claimed_count() == 0

    def test_empty_administrator_rejected(self):
        with pytest.raises(InvalidAdministratorError):
            AirdropRegistry("", LEDGER)

    def test_empty_ledger_rejected(self):
        with pytest.raises(ValueError):
            AirdropRegistry(OWNER, "")

    def test_root_defaults_to_empty(self):
        assert AirdropRegistry(OWNER, LEDGER).read_root() == ""


class TestAdministration:
    """Tests for the administrator gate."""

    def test_rotate_root(self, registry):
        """Administrator rotates the root and gets the previous one back."""
        previous = registry.rotate_root(OWNER, "cd" * 32)
        assert previous == ROOT
        assert registry.read_root() == "cd" * 32

    def test_rotate_root_unauthorized(self, registry):
        """Non-administrators cannot rotate and nothing changes."""
        with pytest.raises(UnauthorizedError) as exc_info:
            registry.rotate_root("mallory.testnet", "cd" * 32)
        assert exc_info.value.caller == "mallory.testnet"
        assert registry.read_root() == ROOT

    def test_rotation_keeps_claims(self, registry):
        registry.acquire_claim("alice.testnet")
        registry.rotate_root(OWNER, "cd" * 32)
        assert registry.has_claimed("alice.testnet")

    def test_transfer_administration(self, registry):
        """Only the new administrator can act afterwards."""
        registry.transfer_administration(OWNER, "new.testnet")
        assert registry.administrator == "new.testnet"

        with pytest.raises(UnauthorizedError):
            registry.rotate_root(OWNER, "cd" * 32)
        registry.rotate_root("new.testnet", "cd" * 32)

    def test_transfer_to_empty_rejected(self, registry):
        with pytest.raises(InvalidAdministratorError):
            registry.transfer_administration(OWNER, "")
        assert registry.administrator == OWNER

    def test_transfer_unauthorized(self, registry):
        with pytest.raises(UnauthorizedError):
            registry.transfer_administration("mallory.testnet", "mallory.testnet")
        assert registry.administrator == OWNER


class TestClaimedSet:
    """Tests for acquire/release of claim marks."""

    def test_acquire_and_release(self, registry):
        registry.acquire_claim("alice.testnet")
        assert registry.has_claimed("alice.testnet")
        assert registry.claimed_accounts() == frozenset({"alice.testnet"})

        registry.release_claim("alice.testnet")
        assert not registry.has_claimed("alice.testnet")

    def test_acquire_twice(self, registry):
        registry.acquire_claim("alice.testnet")
        with pytest.raises(AlreadyClaimedError):
            registry.acquire_claim("alice.testnet")

    def test_release_unknown_is_noop(self, registry):
        registry.release_claim("nobody.testnet")
        assert registry.claimed_count() == 0

    def test_to_dict(self, registry):
        registry.acquire_claim("alice.testnet")
        assert registry.to_dict() == {
            'administrator': OWNER,
            'ledger_id': LEDGER,
            'merkle_root': ROOT,
            'claimed_count': 1,
        }


class TestDeposit:
    """Tests for require_attached_deposit."""

    def test_minimum_accepted(self):
        require_attached_deposit(1)

    @pytest.mark.parametrize("attached", [None, 0])
    def test_missing_deposit(self, attached):
        with pytest.raises(DepositRequiredError) as exc_info:
            require_attached_deposit(attached)
        assert exc_info.value.required == 1

    def test_custom_minimum(self):
        with pytest.raises(DepositRequiredError):
            require_attached_deposit(5, minimum=10)
