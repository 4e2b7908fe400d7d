"""
merkledrop/protocol/allowlist.py

Allow-list airdrop: the owner stores each recipient's amount directly
instead of committing to a merkle root.

Claims follow the same at-most-once rule as the merkle variant: the
entry is removed before the transfer and restored if the transfer
fails.
"""

import logging
from typing import Dict, List, Optional, Sequence

from ..blockchain.ledger import TokenLedger
from ..blockchain.merkle import normalize_amount
from ..config import TRANSFER_DEPOSIT
from ..errors import (
    ExternalCallFailedError,
    InvalidAdministratorError,
    NothingToClaimError,
    UnauthorizedError,
)

logger = logging.getLogger("merkledrop.protocol.allowlist")


class AllowListAirdrop:
    """
    Owner-managed table of claimable amounts.

    Usage:
        airdrop = AllowListAirdrop("owner.testnet", ledger)
        airdrop.add_airdrops("owner.testnet", ["alice.testnet"], [100])

        await airdrop.claim_airdrop("alice.testnet")
    """

    def __init__(
        self,
        owner: str,
        ledger: TokenLedger,
        transfer_deposit: int = TRANSFER_DEPOSIT,
    ):
        if not owner:
            raise InvalidAdministratorError("Owner must not be empty")
        self._owner = owner
        self.ledger = ledger
        self.transfer_deposit = transfer_deposit
        self._airdrops: Dict[str, int] = {}

    def get_owner(self) -> str:
        return self._owner

    def check_airdrop(self, account_id: str) -> int:
        """Claimable amount for an account, 0 when absent."""
        return self._airdrops.get(account_id, 0)

    def _require_owner(self, caller: str, action: str) -> None:
        if caller != self._owner:
            raise UnauthorizedError(caller, action)

    def add_airdrops(
        self,
        caller: str,
        recipients: Sequence[str],
        amounts: Sequence[int],
    ) -> List[str]:
        """
        Add recipients with their amounts.

        Existing recipients keep their current amount.

        Returns:
            Recipients that were skipped
        """
        self._require_owner(caller, "add airdrops")
        if len(recipients) != len(amounts):
            raise ValueError(
                f"Recipients and amounts differ in length ({len(recipients)} != {len(amounts)})"
            )

        values = [normalize_amount(amount) for amount in amounts]
        skipped = []
        for recipient, amount in zip(recipients, values):
            if recipient in self._airdrops:
                logger.info(f"Account @{recipient} already exists in the airdrop list. Skipping...")
                skipped.append(recipient)
                continue
            self._airdrops[recipient] = amount

        logger.info(f"Added {len(recipients) - len(skipped)} airdrops ({len(skipped)} skipped)")
        return skipped

    def update_airdrop(self, caller: str, recipient: str, amount: int) -> None:
        self._require_owner(caller, "update airdrops")
        if recipient not in self._airdrops:
            raise KeyError(f"Account @{recipient} is not in the airdrop list.")
        self._airdrops[recipient] = normalize_amount(amount)
        logger.info(f"Airdrop for account @{recipient} updated to {self._airdrops[recipient]}.")

    async def claim_airdrop(self, caller: str, memo: Optional[str] = None) -> int:
        """
        Transfer the caller's amount and remove the entry.

        Returns:
            Amount transferred

        Raises:
            NothingToClaimError: if the caller has no entry
            ExternalCallFailedError: if the transfer fails (entry restored)
        """
        amount = self._airdrops.pop(caller, 0)
        if amount <= 0:
            raise NothingToClaimError(caller)

        try:
            await self.ledger.transfer(caller, amount, self.transfer_deposit, memo)
        except Exception as e:
            # An entry re-added by the owner while the transfer was pending wins
            self._airdrops.setdefault(caller, amount)
            logger.warning(f"Transfer of {amount} to @{caller} failed, entry restored: {e}")
            raise ExternalCallFailedError(ExternalCallFailedError.TRANSFER, e) from e

        logger.info(
            f"Account @{caller} claimed {amount} tokens from @{getattr(self.ledger, 'ledger_id', '')}."
        )
        return amount

    def to_dict(self) -> dict:
        return {
            'owner': self._owner,
            'airdrops': {account: str(amount) for account, amount in self._airdrops.items()},
        }
