"""
merkledrop/api.py

HTTP API for submitting and administering airdrop claims.

The caller's account id is taken from the X-Caller-Id header and the
attached deposit from X-Attached-Deposit; authenticating the caller is
the job of whatever sits in front of this server.
"""

import json
import logging
import time
import trio
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
from urllib.parse import parse_qs, urlparse

from .config import MAX_PROOF_LENGTH, VERSION
from .errors import (
    AirdropError,
    AlreadyClaimedError,
    DepositRequiredError,
    ProofInvalidError,
    UnauthorizedError,
)

if TYPE_CHECKING:
    from .protocol.claims import ClaimCoordinator

logger = logging.getLogger("merkledrop.api")

CALLER_HEADER = "x-caller-id"
DEPOSIT_HEADER = "x-attached-deposit"

ERROR_STATUS = {
    DepositRequiredError: 402,
    UnauthorizedError: 403,
    ProofInvalidError: 403,
    AlreadyClaimedError: 409,
}


@dataclass
class Request:
    """HTTP request representation."""
    method: str
    path: str
    query: Dict[str, List[str]]
    headers: Dict[str, str]
    body: bytes
    path_params: Dict[str, str] = field(default_factory=dict)


@dataclass
class Response:
    """HTTP response representation."""
    status: int
    headers: Dict[str, str]
    body: bytes

    @classmethod
    def json(cls, data: Any, status: int = 200) -> "Response":
        """Create JSON response."""
        body = json.dumps(data, indent=2).encode("utf-8")
        return cls(
            status=status,
            headers={"Content-Type": "application/json"},
            body=body,
        )

    @classmethod
    def text(cls, text: str, status: int = 200, content_type: str = "text/plain") -> "Response":
        """Create text response."""
        return cls(
            status=status,
            headers={"Content-Type": content_type},
            body=text.encode("utf-8"),
        )

    @classmethod
    def error(cls, message: str, status: int = 400, reason: Optional[str] = None) -> "Response":
        """Create error response."""
        data = {"error": message}
        if reason:
            data["reason"] = reason
        return cls.json(data, status=status)

    @classmethod
    def from_exception(cls, error: AirdropError) -> "Response":
        """Map a rejection to its HTTP status."""
        status = 400
        for error_type, code in ERROR_STATUS.items():
            if isinstance(error, error_type):
                status = code
                break
        return cls.error(str(error), status=status, reason=error.reason)


class AirdropAPI:
    """
    HTTP API server for a claim coordinator.

    Usage:
        coordinator = ClaimCoordinator.from_config(config, ledger)

        api = AirdropAPI(coordinator, host="0.0.0.0", port=8080)
        await api.start()
    """

    def __init__(
        self,
        coordinator: "ClaimCoordinator",
        host: str = "127.0.0.1",
        port: int = 8080,
        enable_metrics: bool = True,
        max_proof_length: int = MAX_PROOF_LENGTH,
    ):
        """
        Initialize API server.

        Args:
            coordinator: ClaimCoordinator to expose
            host: Host to bind to (default: localhost)
            port: Port to listen on (default: 8080)
            enable_metrics: Serve /metrics
            max_proof_length: Longest proof accepted on POST /claim
        """
        self.coordinator = coordinator
        self.host = host
        self.port = port
        self.enable_metrics = enable_metrics
        self.max_proof_length = max_proof_length

        self._running = False
        self._start_time = time.time()

        self._routes: Dict[Tuple[str, str], Callable] = {
            ("GET", "/"): self._handle_root,
            ("GET", "/health"): self._handle_health,
            ("GET", "/root"): self._handle_get_root,
            ("GET", "/claimed/{account_id}"): self._handle_claimed,
            ("POST", "/claim"): self._handle_claim,
            ("POST", "/admin/root"): self._handle_set_root,
            ("POST", "/admin/owner"): self._handle_set_owner,
            ("GET", "/records"): self._handle_records,
            ("GET", "/metrics"): self._handle_metrics,
        }

    @property
    def metrics(self):
        return self.coordinator.metrics if self.enable_metrics else None

    async def start(self, task_status=trio.TASK_STATUS_IGNORED) -> None:
        """Start the API server."""
        if self._running:
            logger.warning("API server already running")
            return

        self._running = True
        logger.info(f"Starting airdrop API on {self.host}:{self.port}")

        try:
            await trio.serve_tcp(
                self._handle_connection,
                self.port,
                host=self.host,
                task_status=task_status,
            )
        except Exception as e:
            logger.error(f"API server error: {e}")
            raise
        finally:
            self._running = False

    async def _handle_connection(self, stream: trio.SocketStream) -> None:
        """Handle incoming TCP connection."""
        try:
            request = await self._read_request(stream)
            if not request:
                return

            response = await self._route_request(request)
            await self._send_response(stream, response)

        except Exception as e:
            logger.error(f"Connection error: {e}")
            try:
                await self._send_response(stream, Response.error(str(e), status=500))
            except (trio.BrokenResourceError, trio.ClosedResourceError) as send_error:
                logger.debug(f"Could not send error response: {send_error}")
        finally:
            await stream.aclose()

    async def _read_request(self, stream: trio.SocketStream) -> Optional[Request]:
        """Read and parse HTTP request."""
        try:
            data = b""
            while b"\r\n\r\n" not in data:
                chunk = await stream.receive_some(4096)
                if not chunk:
                    return None
                data += chunk

            header_end = data.index(b"\r\n\r\n")
            header_data = data[:header_end].decode("utf-8")
            body = data[header_end + 4:]

            lines = header_data.split("\r\n")
            request_line = lines[0].split(" ")
            method = request_line[0]
            path_with_query = request_line[1] if len(request_line) > 1 else "/"

            parsed = urlparse(path_with_query)

            headers = {}
            for line in lines[1:]:
                if ":" in line:
                    key, value = line.split(":", 1)
                    headers[key.strip().lower()] = value.strip()

            content_length = int(headers.get("content-length", 0))
            while len(body) < content_length:
                chunk = await stream.receive_some(4096)
                if not chunk:
                    break
                body += chunk

            return Request(
                method=method,
                path=parsed.path,
                query=parse_qs(parsed.query),
                headers=headers,
                body=body[:content_length] if content_length else body,
            )

        except (UnicodeDecodeError, ValueError, trio.BrokenResourceError) as e:
            logger.error(f"Error reading request: {e}")
            return None

    async def _send_response(self, stream: trio.SocketStream, response: Response) -> None:
        """Send HTTP response."""
        status_text = {
            200: "OK",
            400: "Bad Request",
            402: "Payment Required",
            403: "Forbidden",
            404: "Not Found",
            409: "Conflict",
            500: "Internal Server Error",
            502: "Bad Gateway",
        }.get(response.status, "Unknown")

        lines = [f"HTTP/1.1 {response.status} {status_text}"]

        response.headers["Content-Length"] = str(len(response.body))
        response.headers["Connection"] = "close"
        response.headers["Server"] = f"merkledrop/{VERSION}"

        for key, value in response.headers.items():
            lines.append(f"{key}: {value}")

        lines.append("")
        header_bytes = "\r\n".join(lines).encode("utf-8") + b"\r\n"

        await stream.send_all(header_bytes + response.body)

    async def _route_request(self, request: Request) -> Response:
        """Route request to appropriate handler."""
        handler = self._routes.get((request.method, request.path))
        if handler:
            return await handler(request)

        for (method, pattern), handler in self._routes.items():
            if method != request.method:
                continue

            match, params = self._match_path(pattern, request.path)
            if match:
                request.path_params = params
                return await handler(request)

        return Response.error("Not Found", status=404)

    def _match_path(self, pattern: str, path: str) -> Tuple[bool, Dict[str, str]]:
        """Match path against pattern with parameters."""
        pattern_parts = pattern.split("/")
        path_parts = path.split("/")

        if len(pattern_parts) != len(path_parts):
            return False, {}

        params = {}
        for p_part, path_part in zip(pattern_parts, path_parts):
            if p_part.startswith("{") and p_part.endswith("}"):
                if not path_part:
                    return False, {}
                params[p_part[1:-1]] = path_part
            elif p_part != path_part:
                return False, {}

        return True, params

    # ========== Request helpers ==========

    @staticmethod
    def _parse_body(request: Request) -> Tuple[Optional[Dict[str, Any]], Optional[Response]]:
        if not request.body:
            return None, Response.error("Request body required")
        try:
            body = json.loads(request.body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None, Response.error("Invalid JSON")
        if not isinstance(body, dict):
            return None, Response.error("Request body must be a JSON object")
        return body, None

    @staticmethod
    def _caller_and_deposit(request: Request) -> Tuple[str, Optional[int], Optional[Response]]:
        caller = request.headers.get(CALLER_HEADER, "").strip()
        if not caller:
            return "", None, Response.error("X-Caller-Id header required")

        raw = request.headers.get(DEPOSIT_HEADER)
        if raw is None or raw.strip() == "":
            return caller, None, None
        try:
            return caller, int(raw), None
        except ValueError:
            return caller, None, Response.error(f"Invalid X-Attached-Deposit: {raw!r}")

    # ========== Route Handlers ==========

    async def _handle_root(self, request: Request) -> Response:
        return Response.json({
            "name": "merkledrop",
            "version": VERSION,
            "ledger_id": self.coordinator.registry.ledger_id,
            "endpoints": list(f"{m} {p}" for (m, p) in self._routes.keys()),
        })

    async def _handle_health(self, request: Request) -> Response:
        return Response.json({
            "status": "healthy",
            "in_flight": len(self.coordinator.in_flight()),
            "uptime_seconds": time.time() - self._start_time,
        })

    async def _handle_get_root(self, request: Request) -> Response:
        return Response.json({
            "merkle_root": self.coordinator.read_root(),
            "administrator": self.coordinator.registry.administrator,
        })

    async def _handle_claimed(self, request: Request) -> Response:
        account_id = request.path_params.get("account_id")
        if not account_id:
            return Response.error("account_id is required")
        return Response.json({
            "account_id": account_id,
            "claimed": self.coordinator.has_claimed(account_id),
        })

    async def _handle_claim(self, request: Request) -> Response:
        """Handle a claim submission."""
        caller, deposit, problem = self._caller_and_deposit(request)
        if problem:
            return problem
        body, problem = self._parse_body(request)
        if problem:
            return problem

        if "amount" not in body or "proof" not in body:
            return Response.error("amount and proof are required")

        proof = body["proof"]
        if not isinstance(proof, list):
            return Response.error("proof must be a list of hashes", reason="proof_malformed")
        if len(proof) > self.max_proof_length:
            return Response.error(
                f"Proof has {len(proof)} elements, at most {self.max_proof_length} allowed",
                reason="proof_malformed",
            )

        try:
            saga = await self.coordinator.claim(caller, body["amount"], proof, deposit)
        except AirdropError as e:
            return Response.from_exception(e)

        return Response.json(saga.to_dict(), status=200 if saga.succeeded else 502)

    async def _handle_set_root(self, request: Request) -> Response:
        caller, deposit, problem = self._caller_and_deposit(request)
        if problem:
            return problem
        body, problem = self._parse_body(request)
        if problem:
            return problem

        new_root = body.get("root")
        if not isinstance(new_root, str) or not new_root:
            return Response.error("root is required")

        try:
            previous = self.coordinator.administer_root(caller, new_root, deposit)
        except AirdropError as e:
            return Response.from_exception(e)

        return Response.json({"merkle_root": new_root, "previous_root": previous})

    async def _handle_set_owner(self, request: Request) -> Response:
        caller, deposit, problem = self._caller_and_deposit(request)
        if problem:
            return problem
        body, problem = self._parse_body(request)
        if problem:
            return problem

        new_administrator = body.get("new_administrator")
        if not isinstance(new_administrator, str):
            return Response.error("new_administrator is required")

        try:
            self.coordinator.transfer_administration(caller, new_administrator, deposit)
        except AirdropError as e:
            return Response.from_exception(e)

        return Response.json({"administrator": new_administrator})

    async def _handle_records(self, request: Request) -> Response:
        account = request.query.get("account", [None])[0]
        records = self.coordinator.records(account)
        return Response.json({
            "count": len(records),
            "records": [record.to_dict() for record in records],
        })

    async def _handle_metrics(self, request: Request) -> Response:
        """Handle Prometheus metrics endpoint."""
        if not self.metrics:
            return Response.error("Metrics not enabled", status=404)

        return Response.text(
            self.metrics.collect(),
            content_type="text/plain; version=0.0.4; charset=utf-8",
        )
