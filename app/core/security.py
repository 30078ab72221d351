"""Security utilities: password and token hashing, JWTs, mint receipts."""

import hashlib
import hmac
import secrets
import time
from datetime import datetime, timedelta, timezone

from jose import jwt
from passlib.context import CryptContext

from app.core.config import get_settings

settings = get_settings()

# ── Password / token hashing (Argon2) ────────────────────────

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


# ── API token hashing (SHA-256, deterministic for lookups) ────

def hash_api_token(raw_token: str) -> str:
    """One-way SHA-256 hash for API token storage.

    Tokens are looked up by hash on every request, so the hash must be
    deterministic and fast. The raw token has 256 bits of entropy.
    """
    return hashlib.sha256(raw_token.encode()).hexdigest()


def generate_api_token() -> str:
    """Generate a cryptographically secure 256-bit API token."""
    return secrets.token_urlsafe(32)


# ── JWT ───────────────────────────────────────────────────────

def create_jwt(
    subject: str,
    tenant_id: str,
    role: str = "member",
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.jwt_expire_minutes)
    )
    payload = {
        "sub": subject,
        "tid": tenant_id,
        "role": role,
        "exp": expire,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jose.JWTError on failure."""
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])


# ── Mint receipts ─────────────────────────────────────────────

def sign_mint_receipt(asset_id: str, job_id: str) -> str:
    """HMAC-SHA256 proving an asset was produced on-platform by a job."""
    return hmac.new(
        settings.mint_receipt_secret.encode(),
        f"{asset_id}:{job_id}".encode(),
        hashlib.sha256,
    ).hexdigest()


def verify_mint_receipt(asset_id: str, job_id: str, signature: str) -> bool:
    """Recompute the receipt and compare. Existence of an asset is not proof."""
    return hmac.compare_digest(sign_mint_receipt(asset_id, job_id), signature or "")


# ── Signed asset URLs ─────────────────────────────────────────

SIGNED_URL_TTL_SECONDS = 15 * 60


def sign_asset_url(asset_id: str, expires: int) -> str:
    return hmac.new(
        settings.mint_receipt_secret.encode(),
        f"asset-url:{asset_id}:{expires}".encode(),
        hashlib.sha256,
    ).hexdigest()


def generate_signed_url(asset_id: str, base_url: str) -> str:
    expires = int(time.time()) + SIGNED_URL_TTL_SECONDS
    token = sign_asset_url(asset_id, expires)
    return f"{base_url.rstrip('/')}/v1/assets/{asset_id}/file?token={token}&expires={expires}"


def validate_signed_url(asset_id: str, token: str, expires: int) -> bool:
    if time.time() > expires:
        return False
    return hmac.compare_digest(sign_asset_url(asset_id, expires), token)
