"""
timemint — HTTP surface of the ledger engine.

FastAPI application exposing:
- Authorization (grants, revocations, ownership, permission locks)
- Emission parameters and claims (staking, special, game rewards)
- Transfers and allowances
- Audit trail inspection and chain verification

The caller identity is read from the ``X-Caller`` header; authenticating
that identity is the job of the hosting environment. Engine errors are
returned as ``{"code", "reason"}`` with 403 for authorization failures,
409 for budget failures and 400 for ledger failures.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from timemint.core.schema import AuditEventType, FixedAward, RewardEntry
from timemint.errors import (
    AuthorizationError,
    BudgetError,
    LedgerError,
    TimemintError,
)

logger = logging.getLogger(__name__)


# ── Pydantic request models ────────────────────────────────────


class GrantRequest(BaseModel):
    account: str
    permissions: list[str] = Field(
        default_factory=list, description="Permission names; empty means all"
    )


class OwnershipRequest(BaseModel):
    new_owner: str


class LockRequest(BaseModel):
    permission: str
    duration: int = Field(ge=0, description="Seconds the permission stays locked")


class UnlockRequest(BaseModel):
    permission: str


class EmissionParameterRequest(BaseModel):
    channel: str
    value: int = Field(ge=0)


class ToggleRequest(BaseModel):
    active: bool


class AccountRequest(BaseModel):
    account: str


class AmountRequest(BaseModel):
    amount: int = Field(gt=0)


class StrictRewardsRequest(BaseModel):
    entries: list[RewardEntry]
    declared_total: int = Field(ge=0)


class BestEffortRewardsRequest(BaseModel):
    entries: list[RewardEntry]


class FixedAwardRequest(BaseModel):
    award: FixedAward
    accounts: list[str]


class TransferRequest(BaseModel):
    recipient: str
    amount: int


class ApproveRequest(BaseModel):
    spender: str
    amount: int = Field(ge=0)


class TransferFromRequest(BaseModel):
    owner: str
    recipient: str
    amount: int


class ApplicationState:
    """Mutable application state injected at startup."""

    def __init__(self) -> None:
        self.engine: Any = None


state = ApplicationState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if state.engine is None:
        from timemint.orchestrator import build_engine, configure_logging

        configure_logging()
        state.engine = build_engine()
    logger.info("timemint API started: owner=%s", state.engine.owner)
    yield
    logger.info("timemint API shut down")


app = FastAPI(
    title="timemint",
    description="Permissioned ledger with time-budgeted emission",
    version="0.1.0",
    lifespan=lifespan,
)


_STATUS_BY_ERROR = (
    (AuthorizationError, 403),
    (BudgetError, 409),
    (LedgerError, 400),
)


@app.exception_handler(TimemintError)
async def timemint_error_handler(request: Request, exc: TimemintError) -> JSONResponse:
    status = next((code for kind, code in _STATUS_BY_ERROR if isinstance(exc, kind)), 400)
    return JSONResponse(status_code=status, content=exc.to_dict())


def _engine():
    return state.engine


# ── Routes: Health & queries ───────────────────────────────────


@app.get("/health")
async def health():
    return {"status": "ok", "engine": state.engine is not None}


@app.get("/api/supply")
async def api_supply():
    return {"total_supply": _engine().total_supply, "owner": _engine().owner}


@app.get("/api/balances/{account}")
async def api_balance(account: str):
    return {"account": account, "balance": _engine().balance_of(account)}


@app.get("/api/permissions/{account}")
async def api_permissions(account: str):
    return {"account": account, "permissions": _engine().permissions_of(account)}


@app.get("/api/locks/{permission}")
async def api_lock(permission: str):
    return _engine().lock_of(permission).model_dump()


@app.get("/api/emission/{channel}")
async def api_emission(channel: str):
    engine = _engine()
    return {
        "channel": channel,
        **engine.emission_state(channel).model_dump(),
        "mintable": engine.mintable(channel),
    }


@app.get("/api/events")
async def api_events(event_type: AuditEventType | None = None, limit: int = 50):
    events = _engine().audit_log.latest(limit, event_type)
    return {"events": [event.model_dump(mode="json") for event in events]}


@app.get("/api/events/verify")
async def api_events_verify():
    is_valid, verified, message = _engine().audit_log.verify_chain()
    return {"valid": is_valid, "events_verified": verified, "message": message}


# ── Routes: Authorization ──────────────────────────────────────


@app.post("/api/grants")
async def api_grant(body: GrantRequest, x_caller: str = Header()):
    if body.permissions:
        _engine().grant_many(x_caller, body.account, body.permissions)
    else:
        _engine().grant_all(x_caller, body.account)
    return {"account": body.account, "permissions": _engine().permissions_of(body.account)}


@app.post("/api/revocations")
async def api_revoke(body: GrantRequest, x_caller: str = Header()):
    if body.permissions:
        _engine().revoke_many(x_caller, body.account, body.permissions)
    else:
        _engine().revoke_all(x_caller, body.account)
    return {"account": body.account, "permissions": _engine().permissions_of(body.account)}


@app.post("/api/ownership")
async def api_transfer_ownership(body: OwnershipRequest, x_caller: str = Header()):
    _engine().transfer_ownership(x_caller, body.new_owner)
    return {"owner": _engine().owner}


@app.post("/api/locks")
async def api_lock_permission(body: LockRequest, x_caller: str = Header()):
    return _engine().lock_permission(x_caller, body.permission, body.duration).model_dump()


@app.post("/api/locks/unlock")
async def api_unlock_permission(body: UnlockRequest, x_caller: str = Header()):
    return _engine().unlock_permission(x_caller, body.permission).model_dump()


# ── Routes: Emission parameters ────────────────────────────────


@app.post("/api/emission/active")
async def api_emission_active(body: ToggleRequest, x_caller: str = Header()):
    _engine().set_emission_active(x_caller, body.active)
    return {"emission_active": body.active}


@app.post("/api/emission/staking-address")
async def api_staking_address(body: AccountRequest, x_caller: str = Header()):
    _engine().set_staking_address(x_caller, body.account)
    return {"staking_address": body.account}


@app.post("/api/emission/rate")
async def api_emission_rate(body: EmissionParameterRequest, x_caller: str = Header()):
    _engine().set_rate(x_caller, body.channel, body.value)
    return _engine().emission_state(body.channel).model_dump()


@app.post("/api/emission/cap")
async def api_emission_cap(body: EmissionParameterRequest, x_caller: str = Header()):
    _engine().set_cap(x_caller, body.channel, body.value)
    return _engine().emission_state(body.channel).model_dump()


# ── Routes: Emission claims ────────────────────────────────────


@app.post("/api/emission/staking/claim")
async def api_claim_staking(x_caller: str = Header()):
    return {"minted": _engine().claim_staking_emission(x_caller)}


@app.post("/api/emission/special")
async def api_special_emission(body: AmountRequest, x_caller: str = Header()):
    return {"minted": _engine().special_emission(x_caller, body.amount)}


@app.post("/api/rewards/best-effort")
async def api_rewards_best_effort(body: BestEffortRewardsRequest, x_caller: str = Header()):
    result = _engine().distribute_game_rewards_best_effort(x_caller, body.entries)
    return result.model_dump()


@app.post("/api/rewards/strict")
async def api_rewards_strict(body: StrictRewardsRequest, x_caller: str = Header()):
    result = _engine().distribute_game_rewards_strict(x_caller, body.entries, body.declared_total)
    return result.model_dump()


@app.post("/api/rewards/fixed")
async def api_rewards_fixed(body: FixedAwardRequest, x_caller: str = Header()):
    result = _engine().distribute_fixed_award(x_caller, body.award, body.accounts)
    return result.model_dump()


# ── Routes: Transfers ──────────────────────────────────────────


@app.post("/api/transfers")
async def api_transfer(body: TransferRequest, x_caller: str = Header()):
    received = _engine().transfer(x_caller, body.recipient, body.amount)
    return {"recipient": body.recipient, "received": received}


@app.post("/api/approvals")
async def api_approve(body: ApproveRequest, x_caller: str = Header()):
    _engine().approve(x_caller, body.spender, body.amount)
    return {"owner": x_caller, "spender": body.spender, "allowance": body.amount}


@app.post("/api/transfers/from")
async def api_transfer_from(body: TransferFromRequest, x_caller: str = Header()):
    received = _engine().transfer_from(x_caller, body.owner, body.recipient, body.amount)
    return {"recipient": body.recipient, "received": received}
