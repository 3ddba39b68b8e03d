"""Environment validation, run before any network call.

Errors halt the run (HTTP 400 with the error list as `details`); warnings are
only reported.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from .amount import Amount, parse_amount
from .errors import InvalidAmount

_HEX_RE = re.compile(r"^[a-fA-F0-9]+$")
_LARGE_INCREMENT = parse_amount(1_000_000)


@dataclass
class ValidationResult:
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def error(self, msg: str) -> None:
        self.is_valid = False
        self.errors.append(msg)

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        self.is_valid = self.is_valid and other.is_valid
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        return self


def validate_api_credentials(api_key: Optional[str], api_secret: Optional[str]) -> ValidationResult:
    res = ValidationResult()
    for name, value in (("VALR_API_KEY", api_key), ("VALR_API_SECRET", api_secret)):
        if not value:
            res.error(f"{name} is required")
            continue
        if len(value) != 64:
            res.error(f"{name} must be exactly 64 characters")
        if not _HEX_RE.match(value):
            res.error(f"{name} must be hexadecimal")
    return res


def validate_max_loan_ratio(value: Optional[str]) -> ValidationResult:
    res = ValidationResult()
    if not value:
        res.warnings.append("MAX_LOAN_RATIO not set, using default")
        return res
    try:
        num = float(value)
    except ValueError:
        res.error("MAX_LOAN_RATIO must be a valid number")
        return res
    if num != num:
        res.error("MAX_LOAN_RATIO must be a valid number")
    elif num < 0:
        res.error("MAX_LOAN_RATIO cannot be negative")
    elif num > 1:
        res.error("MAX_LOAN_RATIO cannot exceed 1.0 (100%)")
    return res


def validate_min_increment_amount(value: Optional[str]) -> ValidationResult:
    res = ValidationResult()
    if not value:
        res.warnings.append("MIN_INCREMENT_AMOUNT not set, will use API defaults")
        return res
    try:
        parsed = json.loads(value)
    except ValueError:
        res.error("MIN_INCREMENT_AMOUNT must be valid JSON")
        return res
    if not isinstance(parsed, dict):
        res.error("MIN_INCREMENT_AMOUNT must be a JSON object")
        return res

    for currency, amount in parsed.items():
        if not currency:
            res.error("Currency codes must be non-empty strings")
            continue
        if not isinstance(amount, str):
            res.error(f"Amount for {currency} must be a string")
            continue
        try:
            num = parse_amount(amount)
        except InvalidAmount:
            res.error(f"Amount for {currency} must be a valid number")
            continue
        if num <= Amount.zero():
            res.error(f"Amount for {currency} must be positive")
        elif num > _LARGE_INCREMENT:
            res.warnings.append(f"Amount for {currency} is very large, please verify")
    return res


def validate_dry_run(value: Optional[str]) -> ValidationResult:
    res = ValidationResult()
    if value and value not in {"true", "false"}:
        res.warnings.append('DRY_RUN should be "true" or "false", treating as false')
    return res


def validate_environment(env: Optional[Mapping[str, str]] = None) -> ValidationResult:
    e = os.environ if env is None else env
    combined = ValidationResult()
    for r in (
        validate_api_credentials(e.get("VALR_API_KEY"), e.get("VALR_API_SECRET")),
        validate_max_loan_ratio(e.get("MAX_LOAN_RATIO")),
        validate_min_increment_amount(e.get("MIN_INCREMENT_AMOUNT")),
        validate_dry_run(e.get("DRY_RUN")),
    ):
        combined.merge(r)
    return combined


__all__ = [
    "ValidationResult",
    "validate_api_credentials",
    "validate_dry_run",
    "validate_environment",
    "validate_max_loan_ratio",
    "validate_min_increment_amount",
]
