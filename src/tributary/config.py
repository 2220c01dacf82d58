"""
tributary/config.py

Configuration constants and the immutable run configuration.

Parameters are resolved once, at the boundary, by ``resolve_config()``:

    explicit values > environment (TRIBUTARY_*) > parameters file > defaults

The resulting ``TributaryConfig`` is passed to every component at
construction. Nothing in the package reads the environment afterwards.

Usage:
    from tributary.config import resolve_config, load_parameters_file

    config = resolve_config(
        explicit={"network": "mainnet-beta"},
        env=os.environ,
        file_values=load_parameters_file("tributary-parameters.json"),
    )
"""

import json
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from .errors import ConfigurationError

logger = logging.getLogger("tributary.config")


# ============================================================================
# CONSTANTS
# ============================================================================

NETWORKS = ("devnet", "testnet", "mainnet-beta")
COMMITMENTS = ("processed", "confirmed", "finalized")

# Default public endpoints per network
RPC_ENDPOINTS: Dict[str, str] = {
    "devnet": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
}

ENV_PREFIX = "TRIBUTARY_"
DEFAULT_PARAMETERS_FILE = "tributary-parameters.json"

# Fee of a single-signature transaction in lamports
LAMPORTS_PER_SIGNATURE = 5000

# Node limit for one getSignaturesForAddress request
MAX_SIGNATURES_PER_REQUEST = 1000


@dataclass(frozen=True)
class RiskThresholds:
    """Thresholds used by simulate() to flag risky distributions."""
    large_amount: int = 100_000_000_000_000   # raw units
    large_recipient_count: int = 1000
    small_amount: int = 1000                  # raw units


@dataclass(frozen=True)
class TributaryConfig:
    """
    Immutable configuration for one engine.

    Durations are in seconds. Amounts are in the token's raw base units.
    """

    # Network
    network: str = "devnet"
    rpc_url: str = ""
    commitment: str = "confirmed"
    request_timeout: float = 30.0

    # Retry
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_jitter: bool = False

    # Distribution
    default_batch_size: int = 10
    max_batch_size: int = 50
    batch_delay: float = 0.1
    concurrency: int = 4
    minimum_balance: int = 0

    # Discovery
    history_depth: int = 1000

    # Estimates for simulate()
    fee_per_transaction: int = LAMPORTS_PER_SIGNATURE
    seconds_per_batch: float = 2.0
    risk: RiskThresholds = field(default_factory=RiskThresholds)

    def __post_init__(self):
        if self.network not in NETWORKS:
            raise ConfigurationError(
                f"Unknown network: {self.network}",
                {"valid": list(NETWORKS)},
            )
        if self.commitment not in COMMITMENTS:
            raise ConfigurationError(
                f"Unknown commitment level: {self.commitment}",
                {"valid": list(COMMITMENTS)},
            )
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must not be negative")
        if self.retry_base_delay < 0 or self.retry_max_delay < 0:
            raise ConfigurationError("retry delays must not be negative")
        if self.default_batch_size <= 0 or self.max_batch_size <= 0:
            raise ConfigurationError("batch sizes must be positive")
        if self.default_batch_size > self.max_batch_size:
            raise ConfigurationError(
                "default_batch_size exceeds max_batch_size",
                {"default_batch_size": self.default_batch_size, "max_batch_size": self.max_batch_size},
            )
        if self.concurrency <= 0:
            raise ConfigurationError("concurrency must be positive")
        if self.minimum_balance < 0:
            raise ConfigurationError("minimum_balance must not be negative")
        if not 0 < self.history_depth <= MAX_SIGNATURES_PER_REQUEST:
            raise ConfigurationError(
                f"history_depth must be between 1 and {MAX_SIGNATURES_PER_REQUEST}",
                {"history_depth": self.history_depth},
            )

    @property
    def endpoint(self) -> str:
        """RPC URL, falling back to the network's public endpoint."""
        return self.rpc_url or RPC_ENDPOINTS[self.network]

    @property
    def max_attempts(self) -> int:
        """First try plus retries."""
        return self.max_retries + 1

    def with_overrides(self, **overrides: Any) -> "TributaryConfig":
        return replace(self, **overrides)

    def to_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "risk"}
        data["risk"] = {
            "large_amount": self.risk.large_amount,
            "large_recipient_count": self.risk.large_recipient_count,
            "small_amount": self.risk.small_amount,
        }
        data["endpoint"] = self.endpoint
        return data


# ============================================================================
# RESOLUTION
# ============================================================================

def _parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value}")


def _to_bool(value: Any) -> bool:
    """Booleans from parameters files: JSON true/false, 0/1 or a boolean string."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return _parse_bool(value)
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ValueError(f"not a boolean: {value!r}")


# field name -> (environment suffix, parser)
_ENV_FIELDS: Dict[str, tuple] = {
    "network": ("NETWORK", str),
    "rpc_url": ("RPC_URL", str),
    "commitment": ("COMMITMENT", str),
    "request_timeout": ("NETWORK_TIMEOUT", float),
    "max_retries": ("MAX_RETRIES", int),
    "retry_base_delay": ("RETRY_DELAY", float),
    "retry_max_delay": ("RETRY_MAX_DELAY", float),
    "retry_jitter": ("RETRY_JITTER", _parse_bool),
    "default_batch_size": ("BATCH_SIZE", int),
    "max_batch_size": ("MAX_BATCH_SIZE", int),
    "batch_delay": ("BATCH_DELAY", float),
    "concurrency": ("CONCURRENCY", int),
    "minimum_balance": ("MINIMUM_BALANCE", int),
    "history_depth": ("HISTORY_DEPTH", int),
}

_FIELD_TYPES: Dict[str, Callable[[Any], Any]] = {
    "network": str,
    "rpc_url": str,
    "commitment": str,
    "request_timeout": float,
    "max_retries": int,
    "retry_base_delay": float,
    "retry_max_delay": float,
    "retry_jitter": _to_bool,
    "default_batch_size": int,
    "max_batch_size": int,
    "batch_delay": float,
    "concurrency": int,
    "minimum_balance": int,
    "history_depth": int,
    "fee_per_transaction": int,
    "seconds_per_batch": float,
}


def _from_env(env: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for name, (suffix, parser) in _ENV_FIELDS.items():
        raw = env.get(ENV_PREFIX + suffix)
        if raw is None or raw == "":
            continue
        try:
            values[name] = parser(raw)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid value for {ENV_PREFIX + suffix}: {raw}",
                {"variable": ENV_PREFIX + suffix},
            ) from e
    return values


def _network_rpc_from_env(env: Mapping[str, str], network: str) -> Optional[str]:
    # e.g. TRIBUTARY_MAINNET_RPC for mainnet-beta
    key = ENV_PREFIX + network.split("-")[0].upper() + "_RPC"
    return env.get(key) or None


def _coerce(source: str, values: Mapping[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for name, value in values.items():
        if value is None:
            continue
        if name == "risk":
            if isinstance(value, RiskThresholds):
                result[name] = value
            elif isinstance(value, Mapping):
                try:
                    result[name] = RiskThresholds(**value)
                except TypeError as e:
                    raise ConfigurationError(f"Invalid risk thresholds in {source}") from e
            else:
                raise ConfigurationError(f"Invalid risk thresholds in {source}")
            continue
        caster = _FIELD_TYPES.get(name)
        if caster is None:
            raise ConfigurationError(f"Unknown parameter '{name}' in {source}")
        try:
            result[name] = caster(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value for '{name}' in {source}: {value}") from e
    return result


def resolve_config(
    explicit: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
    file_values: Optional[Mapping[str, Any]] = None,
) -> TributaryConfig:
    """
    Resolve the run configuration.

    Pure: the caller passes the environment mapping (usually ``os.environ``)
    and the already-loaded file values.

    Args:
        explicit: Values given directly by the caller (highest priority)
        env: Environment mapping, read for TRIBUTARY_* variables
        file_values: Values loaded from a parameters file

    Returns:
        TributaryConfig

    Raises:
        ConfigurationError: on unknown keys or invalid values
    """
    merged: Dict[str, Any] = {}
    merged.update(_coerce("parameters file", file_values or {}))
    env_values = _from_env(env or {})
    merged.update(env_values)
    merged.update(_coerce("explicit options", explicit or {}))

    network = merged.get("network", TributaryConfig.network)
    if "rpc_url" not in (explicit or {}) and "rpc_url" not in env_values:
        network_rpc = _network_rpc_from_env(env or {}, network)
        if network_rpc:
            merged["rpc_url"] = network_rpc

    config = TributaryConfig(**merged)
    logger.debug(f"Resolved configuration: network={config.network} endpoint={config.endpoint}")
    return config


def load_parameters_file(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Read a JSON parameters file.

    A missing file yields an empty dict. A malformed file raises.

    Args:
        path: File path (defaults to ./tributary-parameters.json)

    Returns:
        Dict of parameter values
    """
    file_path = Path(path or DEFAULT_PARAMETERS_FILE)
    if not file_path.exists():
        logger.debug(f"No parameters file at {file_path}")
        return {}

    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {file_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Parameters file {file_path} must contain an object")

    logger.info(f"Loaded parameters from {file_path}")
    return data
