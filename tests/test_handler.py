import json

from loan_manager.amount import parse_amount
from loan_manager.data.audit import AuditLevel
from loan_manager.execution.schemas import Balance, CurrencyInfo, OpenLoan, Subaccount
from loan_manager.config import TransportConfig
from loan_manager.execution.valr_client import SignedTransport, ValrClient
from loan_manager.handler import INTERNAL_ERROR_MESSAGE, handle

from conftest import API_KEY, API_SECRET, FakeClock, FakeResponse, FakeSession, FakeValrClient, loan, run_async

ZAR_INFO = CurrencyInfo(symbol="ZAR", isActive=True, shortName="ZAR", withdrawalDecimalPlaces=2)


def _client(**kwargs):
    return FakeValrClient(
        subaccounts=[Subaccount(id="1001", label="S1")],
        balances={"1001": [Balance(currency="ZAR", available="100")]},
        loans={"1001": [loan("L1", "ZAR", "500")]},
        currencies=[ZAR_INFO],
        **kwargs,
    )


def _body(resp):
    return json.loads(resp["body"])


def test_end_to_end_increase(make_config, sink):
    client = _client()
    resp = run_async(handle(config=make_config(max_loan_ratio=0.8, custom_min_increments={"ZAR": "1"}), client=client, sink=sink))

    assert resp["statusCode"] == 200
    assert resp["headers"]["Content-Type"] == "application/json"
    summary = _body(resp)["summary"]
    planned = summary["execution_plan"]["planned_increases"]
    assert len(planned) == 1
    assert parse_amount(planned[0]["increase_amount"]) == parse_amount("80.00000000")
    assert parse_amount(planned[0]["new_amount"]) == parse_amount("580.00000000")
    assert client.increase_calls == [{"subaccount_id": "1001", "loan_id": "L1", "currency": "ZAR", "increase_by": "80"}]
    assert summary["total_loans_processed"] == 1
    assert summary["total_loans_increased"] == 1
    assert summary["results"][0]["total_amount_increased"] == {"ZAR": "80"}
    assert summary["execution_plan"]["risk_assessment"] == "low"
    assert sink.of_type("run_complete")


def test_full_ratio_increases_by_whole_balance(make_config, sink):
    client = _client()
    resp = run_async(handle(config=make_config(max_loan_ratio=1.0), client=client, sink=sink))
    assert client.increase_calls[0]["increase_by"] == "100"
    assert _body(resp)["summary"]["execution_plan"]["total_increases_by_currency"] == {"ZAR": "100"}


def test_dry_run_plans_identically_without_mutation(make_config, sink):
    live_client, dry_client = _client(), _client()
    live = _body(run_async(handle(config=make_config(), client=live_client, sink=sink)))["summary"]
    dry = _body(run_async(handle(config=make_config(dry_run=True), client=dry_client, sink=sink)))["summary"]

    assert dry_client.increase_calls == []
    assert dry["execution_plan"]["planned_increases"] == live["execution_plan"]["planned_increases"]
    assert [r["success"] for r in dry["execution_results"]] == [r["success"] for r in live["execution_results"]]
    assert dry["dry_run"] is True


def test_one_bad_loan_does_not_block_the_rest(make_config, sink):
    client = FakeValrClient(
        subaccounts=[Subaccount(id="1", label="a"), Subaccount(id="2", label="b")],
        balances={"1": [Balance(currency="ZAR", available="300")], "2": [Balance(currency="ZAR", available="10")]},
        loans={
            "1": [loan("L1", "ZAR", "1"), OpenLoan(loanId="L2", currency="ZAR", totalAmount="??"), loan("L3", "ZAR", "1")],
            "2": [loan("L4", "ZAR", "1")],
        },
        currencies=[ZAR_INFO],
        failing_loans={"L4"},
    )
    summary = _body(run_async(handle(config=make_config(max_loan_ratio=0.5), client=client, sink=sink)))["summary"]

    assert [c["loan_id"] for c in client.increase_calls] == ["L1", "L3", "L4"]
    assert summary["total_loans_processed"] == 3
    assert summary["total_loans_increased"] == 2
    assert len(summary["errors"]) == 2
    assert any("L2" in e for e in summary["errors"])
    assert any("L4" in e for e in summary["errors"])


def test_empty_account_returns_success(make_config, sink):
    client = FakeValrClient(subaccounts=[])
    resp = run_async(handle(config=make_config(), client=client, sink=sink))
    body = _body(resp)
    assert resp["statusCode"] == 200
    assert body["success"] is True
    assert body["summary"]["total_subaccounts"] == 0
    assert body["summary"]["execution_plan"]["planned_increases"] == []


def test_invalid_environment_returns_400_before_any_call(sink):
    resp = run_async(handle(env={"VALR_API_KEY": "short", "MAX_LOAN_RATIO": "2"}, sink=sink))
    body = _body(resp)
    assert resp["statusCode"] == 400
    assert body["success"] is False
    assert body["error"] == "Configuration validation failed"
    assert "VALR_API_SECRET is required" in body["details"]
    assert "MAX_LOAN_RATIO cannot exceed 1.0 (100%)" in body["details"]
    assert sink.of_type("configuration_invalid")


def test_unexpected_failure_returns_sanitized_500(make_config, sink):
    class Exploding(FakeValrClient):
        def get_subaccounts(self):
            raise RuntimeError(f"secret={API_SECRET}")

    resp = run_async(handle(config=make_config(), client=Exploding(subaccounts=[]), sink=sink))
    body = _body(resp)
    assert resp["statusCode"] == 500
    assert body == {"success": False, "error": INTERNAL_ERROR_MESSAGE}
    assert API_SECRET not in resp["body"]
    assert sink.at_least(AuditLevel.error)


def test_valid_environment_builds_config(sink, monkeypatch):
    captured = {}

    async def fake_run(config, *, client=None, audit=None, run_id=None):
        captured["config"] = config
        from loan_manager.execution.reporting import build_summary
        from loan_manager.execution.schemas import ExecutionPlan

        return build_summary(subaccounts=[], plan=ExecutionPlan(), results=[])

    monkeypatch.setattr("loan_manager.handler.run_loan_management", fake_run)
    env = {"VALR_API_KEY": API_KEY, "VALR_API_SECRET": API_SECRET, "DRY_RUN": "true", "MAX_LOAN_RATIO": "0.25"}
    resp = run_async(handle(env=env, sink=sink))
    assert resp["statusCode"] == 200
    assert captured["config"].dry_run is True
    assert captured["config"].max_loan_ratio == 0.25
    assert sink.of_type("configuration_warning")


def test_unexpected_failure_message_is_not_logged(make_config, sink):
    class Exploding(FakeValrClient):
        def get_subaccounts(self):
            raise RuntimeError(f"secret={API_SECRET}")

    run_async(handle(config=make_config(), client=Exploding(subaccounts=[]), sink=sink))
    failed = sink.of_type("run_failed")
    assert failed[0].payload == {"error_type": "RuntimeError"}
    assert all(API_SECRET not in json.dumps(e.payload) for e in sink.events)


def test_unparseable_increment_returns_400_before_any_call(sink, monkeypatch):
    def no_network(*args, **kwargs):
        raise AssertionError("no exchange call expected")

    monkeypatch.setattr("loan_manager.handler.run_loan_management", no_network)
    env = {"VALR_API_KEY": API_KEY, "VALR_API_SECRET": API_SECRET, "MIN_INCREMENT_AMOUNT": '{"ZAR": "1e-2"}'}
    resp = run_async(handle(env=env, sink=sink))
    assert resp["statusCode"] == 400
    assert _body(resp)["details"] == ["Amount for ZAR must be a valid number"]


def test_malformed_exchange_row_is_not_echoed(make_config, sink, credentials):
    clock = FakeClock()
    session = FakeSession(
        [
            FakeResponse(200, [{"id": "1", "label": "S1"}]),
            FakeResponse(200, [{"currency": "ZAR", "available": "100"}]),
            FakeResponse(200, [{"loanId": "L1", "currency": "ZAR", "internalNote": "RAW-BODY-SECRET"}]),
        ]
    )
    transport = SignedTransport(
        credentials, config=TransportConfig(), session=session, sleep=clock.sleep, clock=clock.time
    )
    resp = run_async(handle(config=make_config(), client=ValrClient(transport), sink=sink))

    assert resp["statusCode"] == 200
    summary = _body(resp)["summary"]
    assert summary["errors"] == [
        "Failed to fetch account data: malformed_response error on GET /v1/loans/open: unexpected OpenLoan row"
    ]
    assert "RAW-BODY-SECRET" not in resp["body"]
    assert all("RAW-BODY-SECRET" not in json.dumps(e.payload) for e in sink.events)


def test_invalid_exchange_amount_is_reported_by_type_only(make_config, sink):
    client = FakeValrClient(
        subaccounts=[Subaccount(id="1", label="a")],
        balances={"1": [Balance(currency="ZAR", available="100")]},
        loans={"1": [OpenLoan(loanId="L9", currency="ZAR", totalAmount="RAW-AMOUNT")]},
        currencies=[ZAR_INFO],
    )
    resp = run_async(handle(config=make_config(), client=client, sink=sink))
    assert _body(resp)["summary"]["errors"] == ["Failed to plan increase for loan L9: InvalidAmount"]
    assert "RAW-AMOUNT" not in resp["body"]
    assert all("RAW-AMOUNT" not in json.dumps(e.payload) for e in sink.events)
