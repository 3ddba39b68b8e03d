"""Central configuration loader.

Reads env vars into typed, frozen config objects. The core never reads the
process environment itself: `load_config()` is called once by the entrypoint
and the resolved `LoanManagerConfig` is passed down.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from .amount import Amount, parse_amount
from .errors import ConfigurationError, InvalidAmount

DEFAULT_BASE_URL = "https://api.valr.com"
DEFAULT_MAX_LOAN_RATIO = 1.0
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_MAX_ATTEMPTS = 3


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    val = env.get(name)
    if val is None or val.strip() == "":
        return default
    return int(val)


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    val = env.get(name)
    if val is None or val.strip() == "":
        return default
    return float(val)


def _env_json_object(env: Mapping[str, str], name: str) -> Optional[Dict[str, str]]:
    val = env.get(name)
    if val is None or val.strip() == "":
        return None
    parsed = json.loads(val)
    if not isinstance(parsed, dict):
        raise ConfigurationError(f"{name} must be a JSON object")
    return {str(k): str(v) for k, v in parsed.items()}


@dataclass(frozen=True)
class Credentials:
    api_key: str = field(repr=False)
    api_secret: str = field(repr=False)


@dataclass(frozen=True)
class TransportConfig:
    base_url: str = DEFAULT_BASE_URL
    timeout_s: float = DEFAULT_TIMEOUT_S
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_base_delay_s: float = 1.0
    retry_max_delay_s: float = 30.0


@dataclass(frozen=True)
class LoanManagerConfig:
    credentials: Credentials
    max_loan_ratio: float = DEFAULT_MAX_LOAN_RATIO
    dry_run: bool = False
    custom_min_increments: Optional[Dict[str, str]] = None
    transport: TransportConfig = field(default_factory=TransportConfig)

    def __post_init__(self) -> None:
        if not 0.0 <= self.max_loan_ratio <= 1.0:
            raise ConfigurationError(
                f"max_loan_ratio must be within [0, 1], got {self.max_loan_ratio}"
            )


def load_config(env: Optional[Mapping[str, str]] = None) -> LoanManagerConfig:
    """Load configuration from environment (call `validate_environment` first)."""
    e = os.environ if env is None else env
    key = (e.get("VALR_API_KEY") or "").strip()
    secret = (e.get("VALR_API_SECRET") or "").strip()
    if not key or not secret:
        raise ConfigurationError("Missing required environment variables: VALR_API_KEY and VALR_API_SECRET")

    try:
        custom = _env_json_object(e, "MIN_INCREMENT_AMOUNT")
    except ValueError as err:
        raise ConfigurationError("MIN_INCREMENT_AMOUNT must be valid JSON") from err
    for currency, increment in (custom or {}).items():
        try:
            positive = parse_amount(increment) > Amount.zero()
        except InvalidAmount as err:
            raise ConfigurationError(f"Amount for {currency} must be a valid number") from err
        if not positive:
            raise ConfigurationError(f"Amount for {currency} must be positive")

    try:
        transport = TransportConfig(
            base_url=e.get("VALR_BASE_URL") or DEFAULT_BASE_URL,
            timeout_s=_env_float(e, "VALR_TIMEOUT_S", DEFAULT_TIMEOUT_S),
            max_attempts=_env_int(e, "VALR_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
        )
        ratio = _env_float(e, "MAX_LOAN_RATIO", DEFAULT_MAX_LOAN_RATIO)
    except ValueError as err:
        raise ConfigurationError(str(err)) from err

    return LoanManagerConfig(
        credentials=Credentials(api_key=key, api_secret=secret),
        max_loan_ratio=ratio,
        dry_run=e.get("DRY_RUN") == "true",
        custom_min_increments=custom,
        transport=transport,
    )


__all__ = [
    "Credentials",
    "DEFAULT_MAX_LOAN_RATIO",
    "LoanManagerConfig",
    "TransportConfig",
    "load_config",
]
