"""Import all models so SQLModel.metadata picks them up."""

from app.models.api_token import ApiToken
from app.models.asset import Asset, AssetRead
from app.models.credit import BalanceRead, CreditAccount, LedgerEntry, LedgerEntryRead
from app.models.job import Job, JobKind, JobRead, JobStatus
from app.models.membership import MemberRole, Membership, MembershipCreate, MembershipRead
from app.models.safety_event import SafetyEvent
from app.models.tenant import Tenant, TenantRead
from app.models.user import User, UserRead

__all__ = [
    "ApiToken",
    "Asset",
    "AssetRead",
    "BalanceRead",
    "CreditAccount",
    "Job",
    "JobKind",
    "JobRead",
    "JobStatus",
    "LedgerEntry",
    "LedgerEntryRead",
    "MemberRole",
    "Membership",
    "MembershipCreate",
    "MembershipRead",
    "SafetyEvent",
    "Tenant",
    "TenantRead",
    "User",
    "UserRead",
]
