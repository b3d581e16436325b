from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from autopickup.core.config import settings
from autopickup.core.db import get_db
from autopickup.core.errors import RateLimited
from autopickup.core.security import TokenError, decode_token
from autopickup.models.user import User
from autopickup.services.rate_limiter import PickupRateLimiter

bearer_scheme = HTTPBearer(auto_error=False)

# code redemption and order-key pickup are throttled separately
_code_rate_limiter = PickupRateLimiter(
    max_attempts=settings.PICKUP_RATE_LIMIT_MAX,
    window_seconds=settings.PICKUP_RATE_LIMIT_WINDOW_SECONDS,
    scope="redeem",
)
_pickup_rate_limiter = PickupRateLimiter(
    max_attempts=settings.PICKUP_RATE_LIMIT_MAX,
    window_seconds=settings.PICKUP_RATE_LIMIT_WINDOW_SECONDS,
    scope="pickup",
)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    try:
        payload = decode_token(credentials.credentials)
    except TokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    user_id = payload.get("sub") or payload.get("user_id")
    if user_id is None:
        raise HTTPException(status_code=401, detail="Token missing user id (sub)")

    try:
        user_id_int = int(user_id)
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid user id in token")

    res = await db.execute(select(User).where(User.id == user_id_int))
    user = res.scalar_one_or_none()

    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="User inactive")

    return user


def require_merchant(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role not in ("merchant", "admin"):
        raise HTTPException(status_code=403, detail="Merchant only")
    return current_user


def get_code_rate_limiter() -> PickupRateLimiter:
    return _code_rate_limiter


def get_pickup_rate_limiter() -> PickupRateLimiter:
    return _pickup_rate_limiter


def client_origin(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _enforce(limiter: PickupRateLimiter, request: Request) -> None:
    origin = client_origin(request)
    if not limiter.allow(origin):
        raise RateLimited(retry_after=limiter.retry_after(origin) or limiter.window_seconds)


def enforce_code_rate_limit(
    request: Request,
    limiter: PickupRateLimiter = Depends(get_code_rate_limiter),
) -> None:
    _enforce(limiter, request)


def enforce_pickup_rate_limit(
    request: Request,
    limiter: PickupRateLimiter = Depends(get_pickup_rate_limiter),
) -> None:
    _enforce(limiter, request)
