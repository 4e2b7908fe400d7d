"""
merkledrop/blockchain/ledger.py

Token ledger boundary used by the claim coordinator.

The ledger holds and moves balances; merkledrop only calls it.

Architecture:
    TokenLedger (abstract)
    └── JsonRpcLedger (line-delimited JSON-RPC 2.0 over TCP)

Usage:
    from merkledrop.blockchain.ledger import JsonRpcLedger

    ledger = JsonRpcLedger("token.testnet", host="127.0.0.1", port=3030)
    await ledger.register_recipient("alice.testnet", deposit=STORAGE_REGISTRATION_DEPOSIT)
    await ledger.transfer("alice.testnet", 100, deposit=1)
"""

import itertools
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import trio

from ..config import LEDGER_RPC_PARAMS, STORAGE_REGISTRATION_DEPOSIT, TRANSFER_DEPOSIT
from ..errors import LedgerCallError

logger = logging.getLogger("merkledrop.blockchain.ledger")


# ============================================================================
# ABSTRACT TOKEN LEDGER
# ============================================================================

class TokenLedger(ABC):
    """
    Abstract base class for the external token ledger.

    Every method either returns normally or raises LedgerCallError.
    """

    ledger_id: str = ""

    @abstractmethod
    async def register_recipient(
        self,
        account_id: str,
        deposit: int = STORAGE_REGISTRATION_DEPOSIT,
    ) -> None:
        """
        Register storage for a recipient on the ledger.

        Args:
            account_id: Account to register
            deposit: Refundable collateral attached to the call

        Raises:
            LedgerCallError: code ``already_registered`` when the account
                already has storage, any other code on failure
        """
        pass

    @abstractmethod
    async def transfer(
        self,
        receiver_id: str,
        amount: int,
        deposit: int = TRANSFER_DEPOSIT,
        memo: Optional[str] = None,
    ) -> None:
        """
        Transfer tokens from the airdrop account to a recipient.

        Args:
            receiver_id: Registered recipient
            amount: Token amount (smallest unit)
            deposit: Fee attached to the call
            memo: Optional transfer memo
        """
        pass

    @abstractmethod
    async def balance_of(self, account_id: str) -> int:
        """Get an account's token balance."""
        pass


# ============================================================================
# JSON-RPC LEDGER
# ============================================================================

class JsonRpcLedger(TokenLedger):
    """
    Talk to a ledger gateway speaking newline-delimited JSON-RPC 2.0.

    One TCP connection per call. A JSON-RPC error whose ``data`` is a
    string becomes the LedgerCallError code, so gateways can report
    ``already_registered`` distinctly.
    """

    BUFFER_SIZE = 4096

    def __init__(
        self,
        ledger_id: str,
        host: str = LEDGER_RPC_PARAMS["host"],
        port: int = LEDGER_RPC_PARAMS["port"],
        timeout: float = LEDGER_RPC_PARAMS["timeout"],
    ):
        """
        Initialize JsonRpcLedger.

        Args:
            ledger_id: Account id of the token contract
            host: Gateway hostname
            port: Gateway port
            timeout: Seconds allowed for one request/response round trip
        """
        self.ledger_id = ledger_id
        self.host = host
        self.port = port
        self.timeout = timeout
        self._ids = itertools.count(1)

    async def register_recipient(
        self,
        account_id: str,
        deposit: int = STORAGE_REGISTRATION_DEPOSIT,
    ) -> None:
        await self.call(
            LEDGER_RPC_PARAMS["register_method"],
            {
                "contract_id": self.ledger_id,
                "account_id": account_id,
                "registration_only": True,
                "deposit": str(deposit),
            },
        )

    async def transfer(
        self,
        receiver_id: str,
        amount: int,
        deposit: int = TRANSFER_DEPOSIT,
        memo: Optional[str] = None,
    ) -> None:
        await self.call(
            LEDGER_RPC_PARAMS["transfer_method"],
            {
                "contract_id": self.ledger_id,
                "receiver_id": receiver_id,
                "amount": str(amount),
                "memo": memo,
                "deposit": str(deposit),
            },
        )

    async def balance_of(self, account_id: str) -> int:
        result = await self.call(
            LEDGER_RPC_PARAMS["balance_method"],
            {"contract_id": self.ledger_id, "account_id": account_id},
        )
        try:
            return int(result)
        except (TypeError, ValueError):
            raise LedgerCallError(
                f"Unexpected balance result: {result!r}", code=LedgerCallError.BAD_RESPONSE
            ) from None

    async def call(self, method: str, params: Dict[str, Any]) -> Any:
        """
        Send one JSON-RPC request and return its result.

        Raises:
            LedgerCallError: on transport failure, timeout, malformed
                response or JSON-RPC error
        """
        request_id = next(self._ids)
        request = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
        payload = (json.dumps(request) + "\n").encode("utf-8")

        try:
            with trio.fail_after(self.timeout):
                line = await self._round_trip(payload)
        except trio.TooSlowError:
            logger.error(f"Ledger {method} timed out after {self.timeout}s")
            raise LedgerCallError(
                f"{method} timed out after {self.timeout}s", code=LedgerCallError.TIMEOUT
            ) from None
        except OSError as e:
            logger.error(f"Ledger {self.host}:{self.port} unreachable: {e}")
            raise LedgerCallError(
                f"Ledger unreachable: {e}", code=LedgerCallError.UNREACHABLE
            ) from e

        try:
            response = json.loads(line)
        except json.JSONDecodeError as e:
            raise LedgerCallError(
                f"Invalid JSON response: {e}", code=LedgerCallError.BAD_RESPONSE
            ) from e

        if not isinstance(response, dict) or response.get("id") != request_id:
            raise LedgerCallError(
                f"Unexpected response to {method}", code=LedgerCallError.BAD_RESPONSE
            )

        error = response.get("error")
        if error:
            if isinstance(error, dict):
                message = error.get("message", "ledger error")
                data = error.get("data")
                code = data if isinstance(data, str) else str(error.get("code", "")) or None
            else:
                message, code = str(error), None
            logger.debug(f"Ledger {method} returned error {code}: {message}")
            raise LedgerCallError(f"{method}: {message}", code=code)

        return response.get("result")

    async def _round_trip(self, payload: bytes) -> bytes:
        stream = await trio.open_tcp_stream(self.host, self.port)
        async with stream:
            await stream.send_all(payload)

            buffer = b""
            while b"\n" not in buffer:
                chunk = await stream.receive_some(self.BUFFER_SIZE)
                if not chunk:
                    raise LedgerCallError(
                        "Connection closed by ledger", code=LedgerCallError.BAD_RESPONSE
                    )
                buffer += chunk

        line, _ = buffer.split(b"\n", 1)
        return line
