"""Tenant memberships — who may spend this tenant's credits."""

import uuid

from fastapi import APIRouter, HTTPException, status
from sqlmodel import select

from app.api.deps import Auth, Session, require_elevated
from app.core.security import hash_password
from app.models.base import utcnow
from app.models.membership import Membership, MembershipCreate, MembershipRead
from app.models.user import User

router = APIRouter(prefix="/members", tags=["members"])


def _to_read(membership: Membership, user: User) -> MembershipRead:
    return MembershipRead(
        tenant_id=membership.tenant_id,
        user_id=membership.user_id,
        email=user.email,
        role=membership.role,
        is_active=membership.is_active,
        created_at=membership.created_at,
    )


@router.post("", response_model=MembershipRead, status_code=status.HTTP_201_CREATED)
async def add_member(
    body: MembershipCreate,
    auth: Auth,
    session: Session,
) -> MembershipRead:
    """Add a user to the caller's tenant.

    An existing user (by email) is linked; otherwise a new user is created
    with this tenant as home, which requires a password.
    """
    require_elevated(auth)

    result = await session.execute(select(User).where(User.email == body.email))
    user = result.scalar_one_or_none()
    if user is None:
        if not body.password:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
                detail="Password is required when creating a new user",
            )
        user = User(
            tenant_id=auth.tenant_id,
            email=body.email,
            password_hash=hash_password(body.password),
            display_name=body.display_name,
        )
        session.add(user)
        await session.flush()

    membership = await session.get(Membership, (auth.tenant_id, user.id))
    if membership is not None and membership.is_active:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User is already a member of this tenant",
        )
    if membership is None:
        membership = Membership(tenant_id=auth.tenant_id, user_id=user.id, role=body.role)
    else:
        membership.role = body.role
        membership.is_active = True
        membership.updated_at = utcnow()
    session.add(membership)
    await session.commit()
    await session.refresh(membership)
    return _to_read(membership, user)


@router.get("", response_model=list[MembershipRead])
async def list_members(auth: Auth, session: Session) -> list[MembershipRead]:
    stmt = (
        select(Membership, User)
        .join(User, User.id == Membership.user_id)  # type: ignore[arg-type]
        .where(Membership.tenant_id == auth.tenant_id)
        .order_by(Membership.created_at.asc())  # type: ignore[attr-defined]
    )
    result = await session.execute(stmt)
    return [_to_read(m, u) for m, u in result.all()]


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_member(
    user_id: uuid.UUID,
    auth: Auth,
    session: Session,
) -> None:
    """Deactivate a membership. Further admissions by that user are refused."""
    require_elevated(auth)
    if user_id == auth.user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot revoke your own membership",
        )

    membership = await session.get(Membership, (auth.tenant_id, user_id))
    if membership is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")

    membership.is_active = False
    membership.updated_at = utcnow()
    session.add(membership)
    await session.commit()
