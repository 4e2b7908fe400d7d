"""
merkledrop/errors.py

Error taxonomy for claim authorization and payout.

Synchronous rejections (everything except ExternalCallFailedError) are
raised before any state is touched, so the caller can retry with
corrected input. ExternalCallFailedError is produced inside a saga
continuation after the optimistic claim mark and always travels with
its compensation.
"""

from typing import Optional


class AirdropError(Exception):
    """Base class for all merkledrop errors."""

    reason = "airdrop_error"


class AlreadyClaimedError(AirdropError):
    """Account is claimed or has a payout in flight."""

    reason = "already_claimed"

    def __init__(self, account_id: str):
        super().__init__(f"Account @{account_id} has already claimed")
        self.account_id = account_id


class ProofInvalidError(AirdropError):
    """Proof is well formed but does not reconstruct the committed root."""

    reason = "proof_invalid"

    def __init__(self, account_id: str, amount: int):
        super().__init__(f"Invalid merkle proof for @{account_id} ({amount})")
        self.account_id = account_id
        self.amount = amount


class ProofMalformedError(AirdropError):
    """A proof element cannot be decoded as a hash."""

    reason = "proof_malformed"

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


class UnauthorizedError(AirdropError):
    """Caller is not the administrator."""

    reason = "unauthorized"

    def __init__(self, caller: str, action: str):
        super().__init__(f"@{caller} is not allowed to {action}")
        self.caller = caller
        self.action = action


class DepositRequiredError(AirdropError):
    """Mutating call arrived without the minimal attached deposit."""

    reason = "deposit_required"

    def __init__(self, attached: int, required: int):
        super().__init__(f"Requires attached deposit of at least {required}, got {attached}")
        self.attached = attached
        self.required = required


class InvalidAdministratorError(AirdropError, ValueError):
    """New administrator identity is empty."""

    reason = "invalid_administrator"


class InvalidAmountError(AirdropError, ValueError):
    """Amount is not a positive integer."""

    reason = "invalid_amount"


class NothingToClaimError(AirdropError):
    """Allow-list account has no tokens to claim."""

    reason = "nothing_to_claim"

    def __init__(self, account_id: str):
        super().__init__("You have no tokens to claim.")
        self.account_id = account_id


class SagaStateError(AirdropError):
    """Illegal claim saga stage transition."""

    reason = "saga_state"


class LedgerCallError(AirdropError):
    """The token ledger rejected a call or could not be reached."""

    reason = "ledger_call_failed"

    ALREADY_REGISTERED = "already_registered"
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"
    BAD_RESPONSE = "bad_response"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class ExternalCallFailedError(AirdropError):
    """A payout step failed after the claim was optimistically marked."""

    reason = "external_call_failed"

    REGISTRATION = "registration"
    TRANSFER = "transfer"

    def __init__(self, stage: str, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Ledger {stage} failed{detail}")
        self.stage = stage
        self.cause = cause
