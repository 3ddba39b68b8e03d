"""VALR REST client: signed transport plus the loan-management endpoints.

Only this layer ever touches API keys. Every request is signed immediately
before it is sent, so each retry carries a fresh timestamp and signature.
Failures are classified into `ErrorKind` values; only rate-limit, 5xx and
network failures are retried.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Type, TypeVar
from urllib.parse import urlencode

import requests
from pydantic import BaseModel, ValidationError

from ..config import Credentials, TransportConfig
from ..data.audit import AuditLog
from ..errors import AuthorizationError, ErrorKind, RateLimited, TransportError
from .schemas import Balance, CurrencyInfo, OpenLoan, Subaccount

MAIN_ACCOUNT_ID = "0"

HEADER_API_KEY = "X-VALR-API-KEY"
HEADER_SIGNATURE = "X-VALR-SIGNATURE"
HEADER_TIMESTAMP = "X-VALR-TIMESTAMP"
HEADER_SUBACCOUNT = "X-VALR-SUB-ACCOUNT-ID"

_RESET_HEADERS = ("x-ratelimit-reset", "ratelimit-reset", "x-rate-limit-reset")

ModelT = TypeVar("ModelT", bound=BaseModel)


def sign_request(
    secret: str,
    *,
    timestamp: str,
    method: str,
    path: str,
    body: str = "",
    subaccount_id: Optional[str] = None,
) -> str:
    """HMAC-SHA512 over timestamp + METHOD + path + body [+ subaccount id]."""
    payload = f"{timestamp}{method.upper()}{path}{body}"
    if subaccount_id and subaccount_id != MAIN_ACCOUNT_ID:
        payload += subaccount_id
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha512).hexdigest()


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for k, v in headers.items():
        if k.lower() == name.lower():
            return v
    return None


def parse_retry_after(value: Optional[str], *, now: float) -> Optional[float]:
    """Retry-After as delta seconds or an HTTP date."""
    if value is None or value.strip() == "":
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        return max(0.0, parsedate_to_datetime(value).timestamp() - now)
    except (TypeError, ValueError):
        return None


def parse_reset_at(headers: Mapping[str, str]) -> Optional[float]:
    """Rate-limit reset as epoch seconds (millisecond values are normalized)."""
    for name in _RESET_HEADERS:
        raw = _header(headers, name)
        if raw is None:
            continue
        try:
            val = float(raw)
        except ValueError:
            continue
        return val / 1000.0 if val > 1e12 else val
    return None


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    min_reset_wait_s: float = 1.0

    def backoff(self, attempt: int) -> float:
        return min(self.base_delay_s * (2 ** attempt), self.max_delay_s)

    def rate_limit_wait(self, err: RateLimited, *, attempt: int, now: float) -> float:
        if err.retry_after_s is not None:
            return min(max(err.retry_after_s, 0.0), self.max_delay_s)
        if err.reset_at is not None:
            return min(max(err.reset_at - now, self.min_reset_wait_s), self.max_delay_s)
        return self.backoff(attempt)


class SignedTransport:
    """Authenticated, rate-limit-aware request channel."""

    def __init__(
        self,
        credentials: Credentials,
        *,
        config: Optional[TransportConfig] = None,
        audit: Optional[AuditLog] = None,
        session: Optional[Any] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.credentials = credentials
        self.config = config or TransportConfig()
        self.policy = RetryPolicy(
            max_attempts=max(1, self.config.max_attempts),
            base_delay_s=self.config.retry_base_delay_s,
            max_delay_s=self.config.retry_max_delay_s,
        )
        self.audit = audit
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        self._sleep = sleep
        self._clock = clock

    def _signed_headers(
        self, *, method: str, path: str, body: str, subaccount_id: Optional[str]
    ) -> Dict[str, str]:
        timestamp = str(int(self._clock() * 1000))
        headers = {
            HEADER_API_KEY: self.credentials.api_key,
            HEADER_SIGNATURE: sign_request(
                self.credentials.api_secret,
                timestamp=timestamp,
                method=method,
                path=path,
                body=body,
                subaccount_id=subaccount_id,
            ),
            HEADER_TIMESTAMP: timestamp,
        }
        if subaccount_id is not None:
            headers[HEADER_SUBACCOUNT] = subaccount_id
        return headers

    def _log_failure(self, *, method: str, path: str, status: Optional[int], had_body: bool, kind: ErrorKind, attempt: int) -> None:
        if not self.audit:
            return
        self.audit.warning(
            "transport_request_failed",
            {
                "method": method,
                "path": path,
                "status": status,
                "had_body": had_body,
                "kind": kind.value,
                "attempt": attempt + 1,
            },
        )

    def _classify(self, resp: Any, *, method: str, path: str) -> TransportError:
        status = int(resp.status_code)
        if status == 429:
            return RateLimited(
                method=method,
                path=path,
                retry_after_s=parse_retry_after(_header(resp.headers, "Retry-After"), now=self._clock()),
                reset_at=parse_reset_at(resp.headers),
            )
        if status in (401, 403):
            return AuthorizationError(method=method, path=path, status=status)
        if 400 <= status < 500:
            return TransportError(ErrorKind.client, method=method, path=path, status=status)
        return TransportError(ErrorKind.service, method=method, path=path, status=status)

    def _decode(self, resp: Any, *, method: str, path: str) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            status = int(resp.status_code)
            if self.audit:
                self.audit.warning(
                    "transport_response_unparsed",
                    {"method": method, "path": path, "status": status},
                )
            # A mutation that returned 2xx was applied; only reads need a body.
            if method != "GET":
                return None
            raise TransportError(
                ErrorKind.malformed_response,
                method=method,
                path=path,
                status=status,
                detail="response body is not JSON",
            ) from e

    def _send_once(self, *, method: str, path: str, body: str, subaccount_id: Optional[str]) -> Any:
        headers = self._signed_headers(method=method, path=path, body=body, subaccount_id=subaccount_id)
        return self.session.request(
            method,
            self.config.base_url.rstrip("/") + path,
            data=body if body else None,
            headers=headers,
            timeout=self.config.timeout_s,
        )

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        subaccount_id: Optional[str] = None,
    ) -> Any:
        """Send a signed request; return the decoded JSON body (or None)."""
        method = method.upper()
        if params:
            query = urlencode({k: v for k, v in params.items() if v is not None})
            if query:
                path = f"{path}?{query}"
        body = json.dumps(json_body, separators=(",", ":")) if json_body is not None else ""

        last_err: Optional[TransportError] = None
        for attempt in range(self.policy.max_attempts):
            try:
                resp = self._send_once(method=method, path=path, body=body, subaccount_id=subaccount_id)
            except requests.RequestException as e:
                last_err = TransportError(
                    ErrorKind.network, method=method, path=path, detail=type(e).__name__
                )
                self._log_failure(method=method, path=path, status=None, had_body=False, kind=ErrorKind.network, attempt=attempt)
            else:
                if 200 <= int(resp.status_code) < 300:
                    if not resp.content:
                        return None
                    return self._decode(resp, method=method, path=path)
                last_err = self._classify(resp, method=method, path=path)
                self._log_failure(
                    method=method,
                    path=path,
                    status=last_err.status,
                    had_body=bool(resp.content),
                    kind=last_err.kind,
                    attempt=attempt,
                )
                if not last_err.retryable:
                    raise last_err

            if attempt + 1 >= self.policy.max_attempts:
                break
            if isinstance(last_err, RateLimited):
                wait = self.policy.rate_limit_wait(last_err, attempt=attempt, now=self._clock())
            else:
                wait = self.policy.backoff(attempt)
            if self.audit:
                self.audit.debug(
                    "transport_retry_scheduled",
                    {"method": method, "path": path, "kind": last_err.kind.value, "wait_s": round(wait, 3)},
                )
            self._sleep(wait)

        assert last_err is not None
        if last_err.kind == ErrorKind.rate_limited:
            raise TransportError(
                ErrorKind.retries_exhausted,
                method=method,
                path=path,
                status=last_err.status,
                detail=f"rate limited after {self.policy.max_attempts} attempts",
            ) from last_err
        raise last_err

    def close(self) -> None:
        self.session.close()


class ValrClient:
    """Thin endpoint wrapper over `SignedTransport`."""

    def __init__(self, transport: SignedTransport):
        self.transport = transport

    @classmethod
    def from_credentials(
        cls,
        credentials: Credentials,
        *,
        config: Optional[TransportConfig] = None,
        audit: Optional[AuditLog] = None,
    ) -> "ValrClient":
        return cls(SignedTransport(credentials, config=config, audit=audit))

    @staticmethod
    def _rows(model: Type[ModelT], rows: Any, *, method: str, path: str) -> List[ModelT]:
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise TransportError(
                ErrorKind.malformed_response, method=method, path=path, detail=f"expected a list of {model.__name__}"
            )
        try:
            return [model.model_validate(r) for r in rows]
        except ValidationError as e:
            raise TransportError(
                ErrorKind.malformed_response, method=method, path=path, detail=f"unexpected {model.__name__} row"
            ) from e

    def get_subaccounts(self) -> List[Subaccount]:
        path = "/v1/account/subaccounts"
        return self._rows(Subaccount, self.transport.request("GET", path), method="GET", path=path)

    def get_balances(self, subaccount_id: str) -> List[Balance]:
        path = "/v1/account/balances"
        rows = self.transport.request("GET", path, subaccount_id=subaccount_id)
        return self._rows(Balance, rows, method="GET", path=path)

    def get_open_loans(self, subaccount_id: str, currency: Optional[str] = None) -> List[OpenLoan]:
        path = "/v1/loans/open"
        rows = self.transport.request(
            "GET",
            path,
            params={"currency": currency} if currency else None,
            subaccount_id=subaccount_id,
        )
        return self._rows(OpenLoan, rows, method="GET", path=path)

    def get_currencies(self) -> List[CurrencyInfo]:
        path = "/v1/public/currencies"
        return self._rows(CurrencyInfo, self.transport.request("GET", path), method="GET", path=path)

    def increase_loan(
        self, subaccount_id: str, *, loan_id: str, currency: str, increase_by: str
    ) -> Any:
        return self.transport.request(
            "PUT",
            "/v1/loans/increase",
            json_body={
                "currencySymbol": currency,
                "increaseLoanAmountBy": increase_by,
                "loanId": loan_id,
            },
            subaccount_id=subaccount_id,
        )

    def close(self) -> None:
        self.transport.close()


__all__ = [
    "MAIN_ACCOUNT_ID",
    "RetryPolicy",
    "SignedTransport",
    "ValrClient",
    "parse_reset_at",
    "parse_retry_after",
    "sign_request",
]
