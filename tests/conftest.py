import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from loan_manager.config import Credentials, LoanManagerConfig
from loan_manager.data.audit import AuditContext, AuditLog, MemoryAuditSink
from loan_manager.errors import ErrorKind, TransportError
from loan_manager.execution.schemas import Balance, CurrencyInfo, OpenLoan, Subaccount

API_KEY = "a" * 64
API_SECRET = "b" * 64


def run_async(coro):
    return asyncio.run(coro)


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None):
        self.status_code = status_code
        self.headers = headers or {}
        self._body = body
        if isinstance(body, bytes):
            self.content = body
        else:
            self.content = b"" if body is None else json.dumps(body).encode("utf-8")

    def json(self):
        if isinstance(self._body, bytes):
            return json.loads(self._body)
        return self._body


class FakeSession:
    """Stands in for requests.Session; replays queued responses in order."""

    def __init__(self, responses: List[Any]):
        self.headers: Dict[str, str] = {}
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def request(self, method, url, data=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "data": data, "headers": dict(headers or {}), "timeout": timeout})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
        self.sleeps: List[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeValrClient:
    """In-memory exchange with the ValrClient method surface."""

    def __init__(
        self,
        *,
        subaccounts: List[Subaccount],
        balances: Optional[Dict[str, List[Balance]]] = None,
        loans: Optional[Dict[str, List[OpenLoan]]] = None,
        currencies: Optional[List[CurrencyInfo]] = None,
        failing_fetch: Optional[set] = None,
        failing_loans: Optional[set] = None,
        currencies_error: bool = False,
    ):
        self.subaccounts = subaccounts
        self.balances = balances or {}
        self.loans = loans or {}
        self.currencies = currencies or []
        self.failing_fetch = failing_fetch or set()
        self.failing_loans = failing_loans or set()
        self.currencies_error = currencies_error
        self.increase_calls: List[Dict[str, str]] = []
        self.closed = False

    def get_subaccounts(self):
        return list(self.subaccounts)

    def get_balances(self, subaccount_id):
        if subaccount_id in self.failing_fetch:
            raise TransportError(ErrorKind.service, method="GET", path="/v1/account/balances", status=503)
        return list(self.balances.get(subaccount_id, []))

    def get_open_loans(self, subaccount_id, currency=None):
        return list(self.loans.get(subaccount_id, []))

    def get_currencies(self):
        if self.currencies_error:
            raise TransportError(ErrorKind.network, method="GET", path="/v1/public/currencies")
        return list(self.currencies)

    def increase_loan(self, subaccount_id, *, loan_id, currency, increase_by):
        self.increase_calls.append(
            {"subaccount_id": subaccount_id, "loan_id": loan_id, "currency": currency, "increase_by": increase_by}
        )
        if loan_id in self.failing_loans:
            raise TransportError(ErrorKind.client, method="PUT", path="/v1/loans/increase", status=400)
        return None

    def close(self):
        self.closed = True


def loan(loan_id: str, currency: str, total: str) -> OpenLoan:
    return OpenLoan(loanId=loan_id, currency=currency, totalAmount=total)


@pytest.fixture
def sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def audit(sink) -> AuditLog:
    return AuditLog(sink, AuditContext(run_id="test_run"))


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(api_key=API_KEY, api_secret=API_SECRET)


@pytest.fixture
def make_config(credentials):
    def _make(**kwargs) -> LoanManagerConfig:
        return LoanManagerConfig(credentials=credentials, **kwargs)

    return _make
