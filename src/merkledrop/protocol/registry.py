"""
merkledrop/protocol/registry.py

Long-lived airdrop state: administrator, ledger identity, committed
merkle root and the claimed set.

The claimed set is only changed through acquire_claim/release_claim,
which the claim coordinator calls; everything else is read-only or
gated on the administrator.
"""

import logging
from typing import FrozenSet, Optional, Set

from ..config import MIN_CALL_DEPOSIT
from ..errors import (
    AlreadyClaimedError,
    DepositRequiredError,
    InvalidAdministratorError,
    UnauthorizedError,
)

logger = logging.getLogger("merkledrop.protocol.registry")


def require_attached_deposit(attached: Optional[int], minimum: int = MIN_CALL_DEPOSIT) -> None:
    """
    Boundary check for mutating entry points.

    Raises:
        DepositRequiredError: if the attached deposit is absent or too small
    """
    attached = attached or 0
    if attached < minimum:
        raise DepositRequiredError(attached, minimum)


class AirdropRegistry:
    """
    Authoritative airdrop state.

    Usage:
        registry = AirdropRegistry(
            administrator="owner.testnet",
            ledger_id="token.testnet",
            committed_root="af6df4...",
        )

        registry.rotate_root("owner.testnet", new_root)
        registry.has_claimed("alice.testnet")
    """

    def __init__(self, administrator: str, ledger_id: str, committed_root: str = ""):
        if not administrator:
            raise InvalidAdministratorError("Administrator must not be empty")
        if not ledger_id:
            raise ValueError("Ledger id must not be empty")

        self._administrator = administrator
        self._ledger_id = ledger_id
        self._committed_root = committed_root
        self._claimed: Set[str] = set()

    # ========== Read-only accessors ==========

    @property
    def administrator(self) -> str:
        return self._administrator

    @property
    def ledger_id(self) -> str:
        return self._ledger_id

    def read_root(self) -> str:
        return self._committed_root

    def has_claimed(self, account_id: str) -> bool:
        return account_id in self._claimed

    def claimed_accounts(self) -> FrozenSet[str]:
        return frozenset(self._claimed)

    def claimed_count(self) -> int:
        return len(self._claimed)

    # ========== Administration ==========

    def require_administrator(self, caller: str, action: str) -> None:
        """
        Raises:
            UnauthorizedError: if caller is not the current administrator
        """
        if caller != self._administrator:
            logger.warning(f"Rejected {action} by @{caller}: not the administrator")
            raise UnauthorizedError(caller, action)

    def rotate_root(self, caller: str, new_root: str) -> str:
        """
        Replace the committed root.

        Claims already recorded are kept.

        Returns:
            The previous root
        """
        self.require_administrator(caller, "rotate the merkle root")
        previous = self._committed_root
        self._committed_root = new_root
        logger.info(f"Merkle root rotated by @{caller}: {previous or '<none>'} -> {new_root}")
        return previous

    def transfer_administration(self, caller: str, new_administrator: str) -> None:
        self.require_administrator(caller, "transfer administration")
        if not new_administrator:
            raise InvalidAdministratorError("New administrator must not be empty")

        self._administrator = new_administrator
        logger.info(f"Administration transferred from @{caller} to @{new_administrator}")

    # ========== Claimed set (coordinator only) ==========

    def acquire_claim(self, account_id: str) -> None:
        """
        Mark an account claimed.

        Raises:
            AlreadyClaimedError: if the account is already a member
        """
        if account_id in self._claimed:
            raise AlreadyClaimedError(account_id)
        self._claimed.add(account_id)

    def release_claim(self, account_id: str) -> None:
        """Remove a claim mark (compensation)."""
        self._claimed.discard(account_id)

    def to_dict(self) -> dict:
        return {
            'administrator': self._administrator,
            'ledger_id': self._ledger_id,
            'merkle_root': self._committed_root,
            'claimed_count': len(self._claimed),
        }
