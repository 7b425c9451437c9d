"""
Tests for the HTTP surface, using FastAPI's TestClient against an app wired
to a temporary ledger and fake adapters.
"""

import json
import time
from contextlib import ExitStack
from datetime import timedelta

import httpx
import pytest
from fastapi.testclient import TestClient

from cognitive_profiler.api.app import create_app
from cognitive_profiler.models.contracts import ProviderId

from tests.conftest import ACCOUNT, SAMPLE_TEXT, FakeAdapter, FlakyLedger, backdate_reservations


@pytest.fixture
def client_for(make_orchestrator):
    """Start an app around the given adapters: client_for({provider: adapter}, **orchestrator_kwargs)."""
    with ExitStack() as stack:
        def _client(adapters, **kwargs) -> TestClient:
            app = create_app(orchestrator=make_orchestrator(adapters, **kwargs))
            return stack.enter_context(TestClient(app))
        yield _client


@pytest.fixture
def client(client_for):
    return client_for({
        ProviderId.OPENAI: FakeAdapter(ProviderId.OPENAI),
        ProviderId.ANTHROPIC: FakeAdapter(ProviderId.ANTHROPIC),
    })


def deposit(client, provider, amount, account=ACCOUNT):
    response = client.post(f"/v1/accounts/{account}/credits", json={"provider": provider, "amount": amount})
    assert response.status_code == 200
    return response.json()


def wait_for_status(client, run_id, statuses, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/v1/runs/{run_id}").json()
        if body["status"] in statuses:
            return body
        time.sleep(0.02)
    raise AssertionError(f"Run {run_id} never reached {statuses}")


class TestHealth:
    def test_health(self, client):
        response = client.get("/v1/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["dependencies"] == {"provider:openai": "configured", "provider:anthropic": "configured"}

    def test_ready_pings_ledger(self, client):
        response = client.get("/v1/ready")

        assert response.status_code == 200
        assert response.json()["database"] == "healthy"


class TestCatalog:
    def test_providers_report_configuration(self, client):
        providers = {p["provider"]: p for p in client.get("/v1/providers").json()}

        assert providers["openai"]["configured"] is True
        assert providers["openai"]["display_name"] == "Zhi1"
        assert providers["perplexity"]["configured"] is False

    def test_costs(self, client):
        costs = client.get("/v1/costs").json()["costs"]

        assert costs["cognitive"]["openai"] == 100
        assert costs["comprehensive_psychological_report"]["deepseek"] == 300

    def test_credit_packages(self, client):
        packages = client.get("/v1/credit-packages").json()

        assert [(p["price_usd"], p["credits"]) for p in packages] == [
            (1, 1_000), (10, 20_000), (100, 500_000), (1000, 10_000_000),
        ]


class TestCredits:
    def test_deposit_and_balances(self, client):
        assert deposit(client, "openai", 250)["balance_after"] == 250

        balances = {b["provider"]: b for b in client.get(f"/v1/accounts/{ACCOUNT}/credits").json()["balances"]}

        assert balances["openai"] == {"provider": "openai", "balance": 250, "held": 0, "available": 250}
        assert balances["deepseek"]["balance"] == 0

    def test_package_purchase(self, client):
        response = client.post(
            f"/v1/accounts/{ACCOUNT}/credits",
            json={"provider": "anthropic", "package_price_usd": 10},
        )

        assert response.status_code == 200
        assert response.json()["deposited"] == 20_000

    def test_unknown_package_is_rejected(self, client):
        response = client.post(
            f"/v1/accounts/{ACCOUNT}/credits",
            json={"provider": "anthropic", "package_price_usd": 7},
        )

        assert response.status_code == 400

    @pytest.mark.parametrize("body", [
        {"provider": "openai"},
        {"provider": "openai", "amount": 10, "package_price_usd": 1},
        {"provider": "openai", "amount": 0},
        {"provider": "gemini", "amount": 10},
    ])
    def test_invalid_deposits_are_unprocessable(self, client, body):
        assert client.post(f"/v1/accounts/{ACCOUNT}/credits", json=body).status_code == 422

    def test_history_lists_usage(self, client):
        deposit(client, "openai", 500)
        client.post("/v1/analyze", json={"text": SAMPLE_TEXT, "account_id": ACCOUNT, "providers": ["openai"]})

        entries = client.get(f"/v1/accounts/{ACCOUNT}/credits/history").json()["entries"]

        assert [(e["delta"], e["action"]) for e in entries] == [(-100, "cognitive"), (500, "deposit")]


class TestAnalyze:
    def test_live_result_and_preview(self, client):
        deposit(client, "openai", 100)

        response = client.post("/v1/analyze", json={
            "text": SAMPLE_TEXT,
            "account_id": ACCOUNT,
            "providers": ["openai", "anthropic"],
        })

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["partial_success"] is True
        outcomes = body["result"]["outcomes"]
        assert outcomes["openai"]["status"] == "success"
        assert outcomes["anthropic"]["status"] == "skipped"
        assert outcomes["anthropic"]["reason"] == "credit_denied"
        assert outcomes["anthropic"]["preview"]["is_preview"] is True

        run = client.get(f"/v1/runs/{body['run_id']}").json()
        assert run["status"] == "completed"
        assert run["progress"]["done"] is True

    def test_all_providers_by_default(self, client):
        body = client.post("/v1/analyze", json={"text": SAMPLE_TEXT, "account_id": ACCOUNT}).json()

        assert set(body["result"]["outcomes"]) == {"openai", "anthropic", "deepseek", "perplexity"}
        assert body["result"]["outcomes"]["perplexity"]["reason"] == "not_configured"

    @pytest.mark.parametrize("body", [
        {"text": "", "account_id": ACCOUNT},
        {"text": "   ", "account_id": ACCOUNT},
        {"text": SAMPLE_TEXT, "account_id": ""},
        {"text": SAMPLE_TEXT, "account_id": ACCOUNT, "providers": []},
        {"text": SAMPLE_TEXT, "account_id": ACCOUNT, "providers": ["gemini"]},
        {"text": SAMPLE_TEXT, "account_id": ACCOUNT, "kind": "astrology"},
    ])
    def test_invalid_requests_are_unprocessable(self, client, body):
        assert client.post("/v1/analyze", json=body).status_code == 422

    def test_ledger_outage_returns_503(self, client_for, ledger):
        client = client_for(
            {ProviderId.OPENAI: FakeAdapter(ProviderId.OPENAI)},
            ledger=FlakyLedger(ledger, fail_reserve_for={ProviderId.OPENAI}),
        )

        response = client.post("/v1/analyze", json={"text": SAMPLE_TEXT, "account_id": ACCOUNT, "providers": ["openai"]})

        assert response.status_code == 503
        assert response.json()["error"] == "ledger_unavailable"


class TestRuns:
    def test_background_run_can_be_polled(self, client):
        deposit(client, "openai", 100)

        response = client.post("/v1/runs", json={"text": SAMPLE_TEXT, "account_id": ACCOUNT, "providers": ["openai"]})

        assert response.status_code == 202
        run_id = response.json()["run_id"]
        body = wait_for_status(client, run_id, {"completed", "failed"})
        assert body["status"] == "completed"
        assert body["result"]["outcomes"]["openai"]["status"] == "success"
        assert body["progress"]["states"] == {"openai": "completed"}

    def test_stream_emits_progress_then_completion(self, client):
        run_id = client.post("/v1/runs", json={"text": SAMPLE_TEXT, "account_id": ACCOUNT, "providers": ["anthropic"]}).json()["run_id"]
        wait_for_status(client, run_id, {"completed"})

        with client.stream("GET", f"/v1/runs/{run_id}/stream") as response:
            events = [
                json.loads(line[len("data: "):])
                for line in response.iter_lines()
                if line.startswith("data: ")
            ]

        assert [e["type"] for e in events] == ["progress", "completion"]
        assert events[0]["snapshot"]["done"] is True
        assert events[1]["status"] == "completed"
        assert events[1]["result"]["outcomes"]["anthropic"]["reason"] == "credit_denied"

    def test_cancel_releases_held_credits(self, client_for):
        adapters = {
            ProviderId.OPENAI: FakeAdapter(ProviderId.OPENAI, delay=10.0),
            ProviderId.DEEPSEEK: FakeAdapter(ProviderId.DEEPSEEK, delay=10.0),
        }
        client = client_for(adapters)
        deposit(client, "openai", 300)
        deposit(client, "deepseek", 300)

        run_id = client.post("/v1/runs", json={
            "text": SAMPLE_TEXT,
            "account_id": ACCOUNT,
            "providers": ["openai", "deepseek"],
        }).json()["run_id"]

        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            states = client.get(f"/v1/runs/{run_id}").json()["progress"]["states"]
            if set(states.values()) == {"loading"}:
                break
            time.sleep(0.02)

        response = client.delete(f"/v1/runs/{run_id}")

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        run = client.get(f"/v1/runs/{run_id}").json()
        assert run["status"] == "cancelled"
        assert set(run["progress"]["states"].values()) == {"errored"}
        balances = {b["provider"]: b for b in client.get(f"/v1/accounts/{ACCOUNT}/credits").json()["balances"]}
        assert (balances["openai"]["balance"], balances["openai"]["held"]) == (300, 0)
        assert (balances["deepseek"]["balance"], balances["deepseek"]["held"]) == (300, 0)

    def test_cancel_finished_run_is_a_no_op(self, client):
        run_id = client.post("/v1/runs", json={"text": SAMPLE_TEXT, "account_id": ACCOUNT, "providers": ["openai"]}).json()["run_id"]
        wait_for_status(client, run_id, {"completed"})

        response = client.delete(f"/v1/runs/{run_id}")

        assert response.status_code == 200
        assert response.json()["status"] == "completed"

    @pytest.mark.parametrize("method, path", [
        ("get", "/v1/runs/missing"),
        ("delete", "/v1/runs/missing"),
        ("get", "/v1/runs/missing/stream"),
    ])
    def test_unknown_run_is_404(self, client, method, path):
        assert getattr(client, method)(path).status_code == 404

    def test_unavailable_provider_reported_per_provider(self, client_for):
        client = client_for({
            ProviderId.OPENAI: FakeAdapter(ProviderId.OPENAI, behavior=httpx.ConnectError("refused")),
            ProviderId.ANTHROPIC: FakeAdapter(ProviderId.ANTHROPIC),
        })
        deposit(client, "openai", 100)
        deposit(client, "anthropic", 100)

        body = client.post("/v1/analyze", json={
            "text": SAMPLE_TEXT,
            "account_id": ACCOUNT,
            "providers": ["openai", "anthropic"],
        }).json()

        assert body["result"]["outcomes"]["openai"] == {"status": "failure", "kind": "unavailable", "message": "refused"}
        assert body["result"]["outcomes"]["anthropic"]["status"] == "success"


class TestStartup:
    def test_startup_releases_stale_holds(self, client_for, ledger, fund):
        fund(ProviderId.OPENAI, 100)
        ledger.reserve(ACCOUNT, ProviderId.OPENAI, 100)
        backdate_reservations(ledger, timedelta(days=1))

        client = client_for({ProviderId.OPENAI: FakeAdapter(ProviderId.OPENAI)})

        balances = {b["provider"]: b for b in client.get(f"/v1/accounts/{ACCOUNT}/credits").json()["balances"]}
        assert (balances["openai"]["balance"], balances["openai"]["held"]) == (100, 0)
        body = client.post("/v1/analyze", json={"text": SAMPLE_TEXT, "account_id": ACCOUNT, "providers": ["openai"]}).json()
        assert body["result"]["outcomes"]["openai"]["status"] == "success"

    def test_startup_keeps_holds_of_live_runs(self, client_for, ledger, fund):
        fund(ProviderId.OPENAI, 100)
        ledger.reserve(ACCOUNT, ProviderId.OPENAI, 100)

        client = client_for({ProviderId.OPENAI: FakeAdapter(ProviderId.OPENAI)})

        balances = {b["provider"]: b for b in client.get(f"/v1/accounts/{ACCOUNT}/credits").json()["balances"]}
        assert balances["openai"]["held"] == 100
