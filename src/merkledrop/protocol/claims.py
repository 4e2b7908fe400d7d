"""
merkledrop/protocol/claims.py

Claim saga coordinator.

Drives one claim through verification, an optimistic claimed mark and
two chained ledger calls, releasing the mark whenever a ledger call
fails so the account can retry.

    claim(amount, proof)
      |-- already claimed?      -> AlreadyClaimedError   (no mutation)
      |-- amount positive?      -> InvalidAmountError    (no mutation)
      |-- proof decodes?        -> ProofMalformedError   (no mutation)
      |-- proof verifies?       -> ProofInvalidError     (no mutation)
      |-- mark claimed, register_recipient(...)
      |     `-- on_registration: failed -> release, rolled_back
      |-- transfer(amount)
            `-- on_transfer: failed -> release, rolled_back
                             ok     -> completed (mark kept)

Usage:
    registry = AirdropRegistry("owner.testnet", "token.testnet", root)
    coordinator = ClaimCoordinator(registry, JsonRpcLedger("token.testnet"))

    saga = await coordinator.claim("alice.testnet", 100, proof, attached_deposit=1)
    if saga.succeeded:
        ...

Liveness: with ledger_call_timeout unset, a ledger call that never
answers keeps the account marked claimed until the call returns.
"""

import logging
import time
import uuid
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence

import trio

from ..blockchain.ledger import TokenLedger
from ..blockchain.merkle import normalize_amount, verify_claim
from ..config import AirdropConfig
from ..errors import (
    AirdropError,
    AlreadyClaimedError,
    ExternalCallFailedError,
    LedgerCallError,
    ProofInvalidError,
)
from ..metrics import MetricsCollector
from .registry import AirdropRegistry, require_attached_deposit
from .saga import ClaimRecord, ClaimSaga, ClaimStage

logger = logging.getLogger("merkledrop.protocol.claims")

MAX_CLAIM_RECORDS = 10_000


class ClaimCoordinator:
    """
    Orchestrates merkle-authorized claims against a token ledger.

    All state changes happen between awaits, so under trio's
    cooperative scheduling the check-and-mark in begin_claim cannot
    interleave with another claim for the same account.
    """

    def __init__(
        self,
        registry: AirdropRegistry,
        ledger: TokenLedger,
        config: Optional[AirdropConfig] = None,
        enable_metrics: bool = True,
    ):
        """
        Initialize ClaimCoordinator.

        Args:
            registry: Airdrop state (root, administrator, claimed set)
            ledger: Token ledger to pay out from
            config: Deposits, timeouts and hashing mode
            enable_metrics: Collect Prometheus metrics
        """
        self.registry = registry
        self.ledger = ledger
        self.config = config or AirdropConfig(
            administrator=registry.administrator,
            ledger_id=registry.ledger_id,
            merkle_root=registry.read_root(),
        )
        self.metrics = MetricsCollector(self) if enable_metrics else None

        self._in_flight: Dict[str, ClaimSaga] = {}
        self._records: Deque[ClaimRecord] = deque(maxlen=MAX_CLAIM_RECORDS)

        ledger_id = getattr(ledger, "ledger_id", "")
        if ledger_id and ledger_id != registry.ledger_id:
            logger.warning(
                f"Ledger client targets @{ledger_id} but registry expects @{registry.ledger_id}"
            )

    @classmethod
    def from_config(
        cls,
        config: AirdropConfig,
        ledger: TokenLedger,
        enable_metrics: bool = True,
    ) -> "ClaimCoordinator":
        """Create a registry and coordinator from one config."""
        registry = AirdropRegistry(
            administrator=config.administrator,
            ledger_id=config.ledger_id,
            committed_root=config.merkle_root,
        )
        return cls(registry, ledger, config=config, enable_metrics=enable_metrics)

    # ========== Read-only ==========

    def read_root(self) -> str:
        return self.registry.read_root()

    def has_claimed(self, account_id: str) -> bool:
        return self.registry.has_claimed(account_id)

    def in_flight(self) -> List[ClaimSaga]:
        return list(self._in_flight.values())

    def get_in_flight(self, account_id: str) -> Optional[ClaimSaga]:
        return self._in_flight.get(account_id)

    def records(self, account_id: Optional[str] = None) -> List[ClaimRecord]:
        """Terminal claim records, oldest first."""
        if account_id is None:
            return list(self._records)
        return [r for r in self._records if r.account_id == account_id]

    # ========== Administration ==========

    def administer_root(self, caller: str, new_root: str, attached_deposit: Optional[int]) -> str:
        """
        Replace the committed root (administrator only).

        Returns:
            The previous root
        """
        require_attached_deposit(attached_deposit, self.config.min_call_deposit)
        return self.registry.rotate_root(caller, new_root)

    def transfer_administration(
        self,
        caller: str,
        new_administrator: str,
        attached_deposit: Optional[int],
    ) -> None:
        require_attached_deposit(attached_deposit, self.config.min_call_deposit)
        self.registry.transfer_administration(caller, new_administrator)

    # ========== Claims ==========

    async def claim(
        self,
        caller: str,
        amount: Any,
        proof: Sequence[Any],
        attached_deposit: Optional[int],
    ) -> ClaimSaga:
        """
        Claim the caller's airdrop.

        Rejections raise before any state changes. Once the claim is
        marked, the payout runs to a terminal stage and the saga is
        returned; a failed payout is reported as a rolled-back saga
        carrying an ExternalCallFailedError, not raised.

        Raises:
            DepositRequiredError, InvalidAmountError, AlreadyClaimedError,
            ProofMalformedError, ProofInvalidError
        """
        saga = self.begin_claim(caller, amount, proof, attached_deposit)
        return await self.run_saga(saga)

    def begin_claim(
        self,
        caller: str,
        amount: Any,
        proof: Sequence[Any],
        attached_deposit: Optional[int],
    ) -> ClaimSaga:
        """Validate a claim and take the optimistic claimed mark."""
        try:
            require_attached_deposit(attached_deposit, self.config.min_call_deposit)

            if self.registry.has_claimed(caller):
                raise AlreadyClaimedError(caller)

            value = normalize_amount(amount)

            valid = verify_claim(
                caller,
                value,
                self.registry.read_root(),
                proof,
                domain_separated=self.config.domain_separated,
            )
            if not valid:
                raise ProofInvalidError(caller, value)

            self.registry.acquire_claim(caller)
        except AirdropError as e:
            logger.warning(f"Rejected claim by @{caller}: {e.reason}")
            if self.metrics:
                self.metrics.record_rejection(e.reason)
            raise

        saga = ClaimSaga(
            saga_id=f"claim-{uuid.uuid4().hex[:16]}",
            account_id=caller,
            amount=value,
            ledger_id=self.registry.ledger_id,
        )
        self._in_flight[caller] = saga
        if self.metrics:
            self.metrics.record_claim_started()

        logger.info(f"Claim {saga.saga_id} started for @{caller} ({value})")
        return saga

    async def run_saga(self, saga: ClaimSaga) -> ClaimSaga:
        """Run the ledger calls for a verified saga to a terminal stage."""
        saga.advance(ClaimStage.AWAITING_REGISTRATION)
        error = await self._invoke(
            ExternalCallFailedError.REGISTRATION,
            self.ledger.register_recipient,
            saga.account_id,
            self.config.storage_deposit,
        )
        if not self._on_registration(saga, error):
            return saga

        error = await self._invoke(
            ExternalCallFailedError.TRANSFER,
            self.ledger.transfer,
            saga.account_id,
            saga.amount,
            self.config.transfer_deposit,
        )
        self._on_transfer(saga, error)
        return saga

    # ========== Continuations ==========

    def _on_registration(self, saga: ClaimSaga, error: Optional[BaseException]) -> bool:
        """Continue after register_recipient. Returns True to proceed."""
        if error is not None:
            if (
                self.config.tolerate_existing_registration
                and isinstance(error, LedgerCallError)
                and error.code == LedgerCallError.ALREADY_REGISTERED
            ):
                logger.debug(f"@{saga.account_id} already registered with @{saga.ledger_id}")
            else:
                self._compensate(saga, ExternalCallFailedError.REGISTRATION, error)
                return False

        saga.advance(ClaimStage.REGISTERED_AWAITING_TRANSFER)
        return True

    def _on_transfer(self, saga: ClaimSaga, error: Optional[BaseException]) -> None:
        """Finish after transfer."""
        if error is not None:
            self._compensate(saga, ExternalCallFailedError.TRANSFER, error)
            return

        saga.advance(ClaimStage.COMPLETED)
        self._finish(saga)
        logger.info(f"Account @{saga.account_id} claimed {saga.amount} tokens from @{saga.ledger_id}.")

    def _compensate(self, saga: ClaimSaga, stage: str, cause: BaseException) -> None:
        """Release the claimed mark and roll the saga back."""
        self.registry.release_claim(saga.account_id)
        saga.fail(ExternalCallFailedError(stage, cause))
        self._finish(saga)
        logger.warning(
            f"Claim {saga.saga_id} for @{saga.account_id} rolled back at {stage}: {cause}"
        )

    def _finish(self, saga: ClaimSaga) -> None:
        self._in_flight.pop(saga.account_id, None)
        self._records.append(saga.to_record())
        if self.metrics:
            self.metrics.record_terminal(saga)

    async def _invoke(
        self,
        stage: str,
        call: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Optional[BaseException]:
        """
        Await one ledger call and return its failure, if any.

        Cancellation of the surrounding task is not a ledger failure
        and propagates.
        """
        timeout = self.config.ledger_call_timeout
        started = time.time()
        error: Optional[BaseException] = None

        try:
            if timeout is None:
                await call(*args)
            else:
                with trio.fail_after(timeout):
                    await call(*args)
        except trio.TooSlowError:
            error = LedgerCallError(
                f"No {stage} response within {timeout}s", code=LedgerCallError.TIMEOUT
            )
        except Exception as e:
            error = e

        if self.metrics:
            self.metrics.record_ledger_call(stage, time.time() - started, error is None)
        return error
