"""
merkledrop/tests/test_ledger.py

Tests for JsonRpcLedger against an in-process JSON-RPC gateway.
"""

import functools
import json

import pytest
import trio

from merkledrop.blockchain.ledger import JsonRpcLedger
from merkledrop.errors import LedgerCallError

LEDGER = "token.testnet"


# ============================================================================
# Fixtures
# ============================================================================

class Gateway:
    """Line-delimited JSON-RPC server; reply(request) returns raw bytes or None."""

    def __init__(self, reply):
        self.reply = reply
        self.requests = []
        self.port = None

    async def handle(self, stream):
        async with stream:
            buffer = b""
            while b"\n" not in buffer:
                chunk = await stream.receive_some(4096)
                if not chunk:
                    return
                buffer += chunk

            request = json.loads(buffer.split(b"\n", 1)[0])
            self.requests.append(request)
            response = await self.reply(request)
            if response is not None:
                await stream.send_all(response)

    async def start(self, nursery):
        listeners = await nursery.start(
            functools.partial(trio.serve_tcp, self.handle, 0, host="127.0.0.1")
        )
        self.port = listeners[0].socket.getsockname()[1]
        return self


def result(value):
    async def reply(request):
        return (json.dumps({"jsonrpc": "2.0", "id": request["id"], "result": value}) + "\n").encode()
    return reply


def rpc_error(code, message, data=None):
    async def reply(request):
        error = {"code": code, "message": message}
        if data is not None:
            error["data"] = data
        return (json.dumps({"jsonrpc": "2.0", "id": request["id"], "error": error}) + "\n").encode()
    return reply


async def gateway_ledger(nursery, reply, timeout=5.0):
    gateway = await Gateway(reply).start(nursery)
    return gateway, JsonRpcLedger(LEDGER, host="127.0.0.1", port=gateway.port, timeout=timeout)


# ============================================================================
# Tests
# ============================================================================

@pytest.mark.timeout(10)
class TestJsonRpcLedger:
    """JsonRpcLedger request/response handling."""

    async def test_transfer_request(self, nursery):
        """Amounts and deposits travel as strings."""
        gateway, ledger = await gateway_ledger(nursery, result(None))

        await ledger.transfer("alice.testnet", 10 ** 24, deposit=1)

        request = gateway.requests[0]
        assert request["jsonrpc"] == "2.0"
        assert request["method"] == "ft_transfer"
        assert request["params"] == {
            "contract_id": LEDGER,
            "receiver_id": "alice.testnet",
            "amount": str(10 ** 24),
            "memo": None,
            "deposit": "1",
        }

    async def test_register_request(self, nursery):
        gateway, ledger = await gateway_ledger(nursery, result({"total": "1250000000000000000000"}))

        await ledger.register_recipient("alice.testnet")

        request = gateway.requests[0]
        assert request["method"] == "storage_deposit"
        assert request["params"]["account_id"] == "alice.testnet"
        assert request["params"]["deposit"] == "1250000000000000000000"
        assert request["params"]["registration_only"] is True

    async def test_balance_of(self, nursery):
        _, ledger = await gateway_ledger(nursery, result("340282366920938463463374607431768211455"))
        assert await ledger.balance_of("alice.testnet") == 2 ** 128 - 1

    async def test_request_ids_increase(self, nursery):
        gateway, ledger = await gateway_ledger(nursery, result(None))
        await ledger.transfer("alice.testnet", 1)
        await ledger.transfer("bob.testnet", 1)
        assert [r["id"] for r in gateway.requests] == [1, 2]

    async def test_already_registered_code(self, nursery):
        """A string error.data becomes the error code."""
        _, ledger = await gateway_ledger(
            nursery, rpc_error(-32000, "account exists", LedgerCallError.ALREADY_REGISTERED)
        )
        with pytest.raises(LedgerCallError) as exc_info:
            await ledger.register_recipient("alice.testnet")
        assert exc_info.value.code == LedgerCallError.ALREADY_REGISTERED

    async def test_numeric_error_code(self, nursery):
        _, ledger = await gateway_ledger(nursery, rpc_error(-32000, "not enough balance"))
        with pytest.raises(LedgerCallError, match="not enough balance") as exc_info:
            await ledger.transfer("alice.testnet", 100)
        assert exc_info.value.code == "-32000"

    async def test_invalid_json(self, nursery):
        async def reply(request):
            return b"this is not json\n"

        _, ledger = await gateway_ledger(nursery, reply)
        with pytest.raises(LedgerCallError) as exc_info:
            await ledger.transfer("alice.testnet", 100)
        assert exc_info.value.code == LedgerCallError.BAD_RESPONSE

    async def test_mismatched_id(self, nursery):
        async def reply(request):
            return (json.dumps({"jsonrpc": "2.0", "id": request["id"] + 1, "result": None}) + "\n").encode()

        _, ledger = await gateway_ledger(nursery, reply)
        with pytest.raises(LedgerCallError) as exc_info:
            await ledger.transfer("alice.testnet", 100)
        assert exc_info.value.code == LedgerCallError.BAD_RESPONSE

    async def test_connection_closed(self, nursery):
        async def reply(request):
            return None

        _, ledger = await gateway_ledger(nursery, reply)
        with pytest.raises(LedgerCallError) as exc_info:
            await ledger.transfer("alice.testnet", 100)
        assert exc_info.value.code == LedgerCallError.BAD_RESPONSE

    async def test_timeout(self, nursery):
        async def reply(request):
            await trio.sleep_forever()

        _, ledger = await gateway_ledger(nursery, reply, timeout=0.2)
        with pytest.raises(LedgerCallError) as exc_info:
            await ledger.transfer("alice.testnet", 100)
        assert exc_info.value.code == LedgerCallError.TIMEOUT

    async def test_unreachable(self):
        listeners = await trio.open_tcp_listeners(0, host="127.0.0.1")
        port = listeners[0].socket.getsockname()[1]
        for listener in listeners:
            await listener.aclose()

        ledger = JsonRpcLedger(LEDGER, host="127.0.0.1", port=port, timeout=2.0)
        with pytest.raises(LedgerCallError) as exc_info:
            await ledger.transfer("alice.testnet", 100)
        assert exc_info.value.code == LedgerCallError.UNREACHABLE
