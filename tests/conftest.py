"""
merkledrop/tests/conftest.py

Shared fixtures: a four-account airdrop tree and an in-memory ledger.
"""

from typing import List, Optional, Tuple

import pytest
import trio

from merkledrop.blockchain.ledger import TokenLedger
from merkledrop.blockchain.merkle import MerkleTree
from merkledrop.config import STORAGE_REGISTRATION_DEPOSIT, TRANSFER_DEPOSIT
from merkledrop.protocol.claims import ClaimCoordinator
from merkledrop.protocol.registry import AirdropRegistry

OWNER = "owner.testnet"
LEDGER = "token.testnet"

ENTRIES = [
    ("user1.testnet", 100),
    ("user2.testnet", 200),
    ("user3.testnet", 300),
    ("user4.testnet", 400),
]


class FakeLedger(TokenLedger):
    """
    In-memory ledger.

    Set register_error / transfer_error to make the next calls fail,
    or gate to hold register_recipient until the event is set.
    """

    def __init__(self, ledger_id: str = LEDGER):
        self.ledger_id = ledger_id
        self.registered: List[Tuple[str, int]] = []
        self.transfers: List[Tuple[str, int, int]] = []
        self.register_error: Optional[Exception] = None
        self.transfer_error: Optional[Exception] = None
        self.gate: Optional[trio.Event] = None

    async def register_recipient(self, account_id, deposit=STORAGE_REGISTRATION_DEPOSIT):
        if self.gate is not None:
            await self.gate.wait()
        if self.register_error is not None:
            raise self.register_error
        self.registered.append((account_id, deposit))

    async def transfer(self, receiver_id, amount, deposit=TRANSFER_DEPOSIT, memo=None):
        await trio.sleep(0)
        if self.transfer_error is not None:
            raise self.transfer_error
        self.transfers.append((receiver_id, amount, deposit))

    async def balance_of(self, account_id):
        return sum(amount for receiver, amount, _ in self.transfers if receiver == account_id)


@pytest.fixture
def tree():
    return MerkleTree(ENTRIES)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def registry(tree):
    return AirdropRegistry(OWNER, LEDGER, tree.root)


@pytest.fixture
def coordinator(registry, ledger):
    return ClaimCoordinator(registry, ledger)
