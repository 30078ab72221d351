"""Credit balance, ledger history, and top-ups. All reads are member-scoped."""

import uuid

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from app.api.deps import Auth, Session, require_elevated
from app.models.credit import BalanceRead, LedgerEntryRead
from app.services import ledger
from app.services.admission import ensure_member

router = APIRouter(prefix="/credits", tags=["credits"])


class GrantRequest(BaseModel):
    amount: int = Field(gt=0, le=1_000_000)
    reason: str = Field(default="manual top-up", min_length=1, max_length=200)


@router.get("/balance", response_model=BalanceRead)
async def get_balance(
    auth: Auth,
    session: Session,
    tenant_id: uuid.UUID | None = None,
) -> BalanceRead:
    scope = tenant_id or auth.tenant_id
    await ensure_member(session, scope, auth.user_id)
    balance = await ledger.get_balance(session, scope)
    return BalanceRead(tenant_id=scope, balance=balance)


@router.get("/ledger", response_model=list[LedgerEntryRead])
async def get_ledger(
    auth: Auth,
    session: Session,
    tenant_id: uuid.UUID | None = None,
    project_id: uuid.UUID | None = None,
) -> list[LedgerEntryRead]:
    """Ledger entries in append order, optionally narrowed to one project."""
    scope = tenant_id or auth.tenant_id
    await ensure_member(session, scope, auth.user_id)
    entries = await ledger.list_ledger(session, scope, project_id=project_id)
    return [LedgerEntryRead.model_validate(e) for e in entries]


@router.post("/grant", response_model=BalanceRead, status_code=status.HTTP_201_CREATED)
async def grant(body: GrantRequest, auth: Auth, session: Session) -> BalanceRead:
    """Top up the caller's tenant (owners and admins only)."""
    require_elevated(auth)
    await ensure_member(session, auth.tenant_id, auth.user_id)
    new_balance = await ledger.grant_credits(
        session, auth.tenant_id, body.amount, body.reason, user_id=auth.user_id
    )
    return BalanceRead(tenant_id=auth.tenant_id, balance=new_balance)
