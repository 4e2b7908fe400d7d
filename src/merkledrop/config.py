"""
merkledrop/config.py

Configuration constants and data classes for merkledrop.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Mapping, Optional
import logging
import os

logger = logging.getLogger("merkledrop.config")


VERSION = "0.1.0"

# Smallest unit of the host currency
ONE_YOCTO = 1

# Refundable collateral the ledger requires to register a recipient
# (0.00125 of the host currency)
STORAGE_REGISTRATION_DEPOSIT = 1_250_000_000_000_000_000_000

# Fee attached to every ledger transfer
TRANSFER_DEPOSIT = ONE_YOCTO

# Anti-replay collateral a caller attaches to value-moving or
# authorization-changing entry points
MIN_CALL_DEPOSIT = ONE_YOCTO

# Proof depth accepted by the caller-facing layer (2^64 leaves)
MAX_PROOF_LENGTH = 64

# Size of a committed hash in bytes
HASH_SIZE = 32

# Default HTTP API port
DEFAULT_API_PORT = 8080

# Ledger JSON-RPC endpoint defaults
LEDGER_RPC_PARAMS = {
    "host": "127.0.0.1",
    "port": 3030,
    "timeout": 30.0,                # seconds per round trip
    "register_method": "storage_deposit",
    "transfer_method": "ft_transfer",
    "balance_method": "ft_balance_of",
}

ENV_PREFIX = "MERKLEDROP_"

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


@dataclass
class AirdropConfig:
    """Runtime settings for a claim coordinator and its API."""
    administrator: str = ""
    ledger_id: str = ""
    merkle_root: str = ""

    # Ledger transport
    ledger_host: str = LEDGER_RPC_PARAMS["host"]
    ledger_port: int = LEDGER_RPC_PARAMS["port"]
    ledger_rpc_timeout: float = LEDGER_RPC_PARAMS["timeout"]

    # Saga behaviour
    ledger_call_timeout: Optional[float] = None  # None = wait for the ledger
    storage_deposit: int = STORAGE_REGISTRATION_DEPOSIT
    transfer_deposit: int = TRANSFER_DEPOSIT
    min_call_deposit: int = MIN_CALL_DEPOSIT
    tolerate_existing_registration: bool = True
    domain_separated: bool = False

    # Caller-facing layer
    max_proof_length: int = MAX_PROOF_LENGTH
    api_host: str = "127.0.0.1"
    api_port: int = DEFAULT_API_PORT

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        **overrides: Any,
    ) -> "AirdropConfig":
        """
        Build a config from MERKLEDROP_* environment variables.

        Explicit keyword overrides win over the environment; a None
        override is ignored so CLI options can be passed through as-is.

        Args:
            environ: Mapping to read from (default: os.environ)
            **overrides: Field values that take precedence

        Returns:
            AirdropConfig
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        converters = {
            "administrator": str,
            "ledger_id": str,
            "merkle_root": str,
            "ledger_host": str,
            "ledger_port": int,
            "ledger_rpc_timeout": float,
            "ledger_call_timeout": float,
            "storage_deposit": int,
            "transfer_deposit": int,
            "min_call_deposit": int,
            "tolerate_existing_registration": _env_bool,
            "domain_separated": _env_bool,
            "max_proof_length": int,
            "api_host": str,
            "api_port": int,
        }

        for name, convert in converters.items():
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is None or raw == "":
                continue
            try:
                values[name] = convert(raw)
            except ValueError:
                logger.warning(f"Ignoring invalid {ENV_PREFIX}{name.upper()}={raw!r}")

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
