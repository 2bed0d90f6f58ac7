"""
Tests for the HTTP surface.

Validates:
- Caller identity taken from the X-Caller header
- Engine errors mapped to 403 / 409 / 400 with a machine-readable code
- Authorization, emission, reward and audit routes
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from timemint.config import TimemintSettings
from timemint.core.clock import ManualClock
from timemint.dashboard.app import app, state
from timemint.engine import LedgerEngine
from timemint.orchestrator import create_app

OWNER = "0xowner"
GAME = "0xgame"
ALICE = "0xalice"
BOB = "0xbob"


def _as(caller: str) -> dict[str, str]:
    return {"X-Caller": caller}


class TestApi:
    def setup_method(self):
        self.clock = ManualClock(0)
        state.engine = LedgerEngine(
            OWNER, clock=self.clock, game=(10, 100_000), initial_supply=1_000,
            winner_amount=100, loser_amount=10,
        )
        self.client = TestClient(app)

    def teardown_method(self):
        state.engine = None

    def test_health(self):
        response = self.client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "engine": True}

    def test_supply_and_balance(self):
        assert self.client.get("/api/supply").json()["total_supply"] == 1_000
        assert self.client.get(f"/api/balances/{OWNER}").json()["balance"] == 1_000

    def test_grant_and_query(self):
        response = self.client.post(
            "/api/grants", json={"account": GAME, "permissions": ["GameEmission"]}, headers=_as(OWNER),
        )
        assert response.status_code == 200
        assert response.json()["permissions"] == ["GameEmission"]
        assert self.client.get(f"/api/permissions/{GAME}").json()["permissions"] == ["GameEmission"]

    def test_grant_all_when_no_permissions_listed(self):
        response = self.client.post("/api/grants", json={"account": ALICE}, headers=_as(OWNER))
        assert len(response.json()["permissions"]) == 7

    def test_missing_caller_header(self):
        response = self.client.post("/api/grants", json={"account": ALICE})
        assert response.status_code == 422

    def test_not_authorized_is_403(self):
        response = self.client.post(
            "/api/grants", json={"account": BOB, "permissions": ["Emission"]}, headers=_as(ALICE),
        )
        assert response.status_code == 403
        assert response.json()["code"] == "not_authorized"

    def test_cannot_revoke_owner_is_403(self):
        response = self.client.post("/api/revocations", json={"account": OWNER}, headers=_as(OWNER))
        assert response.status_code == 403
        assert response.json()["code"] == "cannot_revoke_owner"

    def test_unknown_permission_is_403(self):
        response = self.client.post(
            "/api/grants", json={"account": BOB, "permissions": ["Mint"]}, headers=_as(OWNER),
        )
        assert response.status_code == 403
        assert response.json()["code"] == "unknown_permission"

    def test_lock_and_unlock(self):
        response = self.client.post(
            "/api/locks", json={"permission": "Emission", "duration": 60}, headers=_as(OWNER),
        )
        assert response.json() == {"locked": True, "expiry": 60}

        response = self.client.post("/api/locks/unlock", json={"permission": "Emission"}, headers=_as(BOB))
        assert response.status_code == 409
        assert response.json()["code"] == "still_locked"

        self.clock.set(61)
        response = self.client.post("/api/locks/unlock", json={"permission": "Emission"}, headers=_as(BOB))
        assert response.json() == {"locked": False, "expiry": 60}
        assert self.client.get("/api/locks/Emission").json()["locked"] is False

    def test_budget_exceeded_is_409(self):
        self.clock.set(10)
        response = self.client.post("/api/emission/special", json={"amount": 101}, headers=_as(OWNER))
        assert response.status_code == 409
        assert response.json()["code"] == "budget_exceeded"

    def test_special_emission(self):
        self.clock.set(10)
        response = self.client.post("/api/emission/special", json={"amount": 100}, headers=_as(OWNER))
        assert response.json() == {"minted": 100}
        emission = self.client.get("/api/emission/special").json()
        assert emission["last_claim_timestamp"] == 10
        assert emission["mintable"] == 0

    def test_ledger_error_is_400(self):
        response = self.client.post(
            "/api/transfers", json={"recipient": BOB, "amount": 5}, headers=_as(ALICE),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "insufficient_balance"

    def test_transfer_and_allowance(self):
        self.client.post("/api/approvals", json={"spender": ALICE, "amount": 50}, headers=_as(OWNER))
        response = self.client.post(
            "/api/transfers/from",
            json={"owner": OWNER, "recipient": BOB, "amount": 30},
            headers=_as(ALICE),
        )
        assert response.json() == {"recipient": BOB, "received": 30}
        assert self.client.get(f"/api/balances/{BOB}").json()["balance"] == 30

    def test_rewards(self):
        self.client.post("/api/grants", json={"account": GAME, "permissions": ["GameEmission"]}, headers=_as(OWNER))
        self.clock.set(100)
        response = self.client.post(
            "/api/rewards/best-effort",
            json={"entries": [{"account": ALICE, "amount": 600}, {"account": BOB, "amount": 600}]},
            headers=_as(GAME),
        )
        body = response.json()
        assert body["total"] == 600
        assert body["skipped"] == 1

        response = self.client.post(
            "/api/rewards/strict",
            json={"entries": [{"account": BOB, "amount": 300}], "declared_total": 500},
            headers=_as(GAME),
        )
        assert response.status_code == 409

        response = self.client.post(
            "/api/rewards/fixed", json={"award": "loser", "accounts": [BOB]}, headers=_as(GAME),
        )
        assert response.json()["total"] == 10

    def test_emission_parameters(self):
        response = self.client.post(
            "/api/emission/rate", json={"channel": "game", "value": 3}, headers=_as(OWNER),
        )
        assert response.json()["rate_per_second"] == 3
        response = self.client.post(
            "/api/emission/cap", json={"channel": "lottery", "value": 3}, headers=_as(OWNER),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_parameter"

    def test_staking_claim_inactive(self):
        response = self.client.post("/api/emission/staking/claim", headers=_as(ALICE))
        assert response.status_code == 409
        assert response.json()["code"] == "emission_inactive"

    def test_ownership_transfer(self):
        response = self.client.post("/api/ownership", json={"new_owner": BOB}, headers=_as(OWNER))
        assert response.json() == {"owner": BOB}
        response = self.client.post("/api/ownership", json={"new_owner": ALICE}, headers=_as(OWNER))
        assert response.status_code == 403
        assert response.json()["code"] == "not_owner"

    def test_events_limit(self):
        assert self.client.get("/api/events", params={"limit": 0}).json()["events"] == []
        assert self.client.get("/api/events", params={"limit": -3}).json()["events"] == []
        events = self.client.get("/api/events", params={"limit": 1}).json()["events"]
        assert [e["sequence_number"] for e in events] == [len(state.engine.audit_log) - 1]

    def test_events_and_verify(self):
        self.client.post("/api/grants", json={"account": ALICE, "permissions": ["Emission"]}, headers=_as(OWNER))
        events = self.client.get("/api/events", params={"event_type": "grant_changed", "limit": 5}).json()["events"]
        assert events[0]["payload"] == {"account": ALICE, "permission": "Emission", "granted": True}

        verify = self.client.get("/api/events/verify").json()
        assert verify["valid"] is True
        assert verify["events_verified"] == len(state.engine.audit_log)


class TestCreateApp:
    def teardown_method(self):
        state.engine = None

    def test_engine_built_from_settings(self):
        application = create_app(TimemintSettings(owner_account=OWNER, initial_supply=7))
        client = TestClient(application)
        assert client.get("/api/supply").json() == {"total_supply": 7, "owner": OWNER}
