"""User authentication for Clerk session tokens and the local shared token."""

from __future__ import annotations

from dataclasses import dataclass
from hmac import compare_digest
from typing import TYPE_CHECKING

import httpx
from clerk_backend_api import Clerk
from clerk_backend_api.models.clerkerrors import ClerkErrors
from clerk_backend_api.models.sdkerror import SDKError
from clerk_backend_api.security.types import AuthenticateRequestOptions, AuthStatus, RequestState
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from agentflow.core.config import AuthMode, settings
from agentflow.core.logging import get_logger
from agentflow.db import crud
from agentflow.db.session import get_session
from agentflow.models.users import User

if TYPE_CHECKING:
    from clerk_backend_api.models.user import User as ClerkUser
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)
security = HTTPBearer(auto_error=False)
SECURITY_DEP = Depends(security)
SESSION_DEP = Depends(get_session)
LOCAL_AUTH_USER_ID = "local-auth-user"
LOCAL_AUTH_EMAIL = "admin@home.local"
LOCAL_AUTH_NAME = "Local User"


class ClerkTokenPayload(BaseModel):
    """JWT claims payload shape required from Clerk tokens."""

    sub: str


@dataclass
class AuthContext:
    """Authenticated user resolved from the inbound Authorization header."""

    user: User


def _extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    value = authorization.strip()
    if not value.lower().startswith("bearer "):
        return None
    token = value.split(" ", maxsplit=1)[1].strip()
    return token or None


def _non_empty_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def _normalize_email(value: object) -> str | None:
    text = _non_empty_str(value)
    return text.lower() if text else None


def _extract_claim_email(claims: dict[str, object]) -> str | None:
    for key in ("email", "email_address", "primary_email_address"):
        email = _normalize_email(claims.get(key))
        if email:
            return email
    return None


def _extract_claim_name(claims: dict[str, object]) -> str | None:
    for key in ("name", "full_name"):
        text = _non_empty_str(claims.get(key))
        if text:
            return text
    first = _non_empty_str(claims.get("given_name")) or _non_empty_str(claims.get("first_name"))
    last = _non_empty_str(claims.get("family_name")) or _non_empty_str(claims.get("last_name"))
    parts = [part for part in (first, last) if part]
    return " ".join(parts) if parts else None


def _extract_clerk_profile(profile: ClerkUser | None) -> tuple[str | None, str | None]:
    if profile is None:
        return None, None

    email: str | None = None
    primary_email_id = _non_empty_str(getattr(profile, "primary_email_address_id", None))
    for item in getattr(profile, "email_addresses", None) or []:
        candidate = _normalize_email(getattr(item, "email_address", None))
        if not candidate:
            continue
        if primary_email_id and _non_empty_str(getattr(item, "id", None)) == primary_email_id:
            email = candidate
            break
        if email is None:
            email = candidate

    first = _non_empty_str(getattr(profile, "first_name", None))
    last = _non_empty_str(getattr(profile, "last_name", None))
    parts = [part for part in (first, last) if part]
    name = " ".join(parts) if parts else _non_empty_str(getattr(profile, "username", None))
    return email, name


def _normalize_clerk_server_url(raw: str) -> str | None:
    server_url = raw.strip().rstrip("/")
    if not server_url:
        return None
    if not server_url.endswith("/v1"):
        server_url = f"{server_url}/v1"
    return server_url


def _make_authenticate_request_options() -> AuthenticateRequestOptions:
    return AuthenticateRequestOptions(
        secret_key=settings.clerk_secret_key.strip(),
        clock_skew_in_ms=int(settings.clerk_leeway * 1000),
        accepts_token=["session_token"],
    )


async def _authenticate_clerk_request(request: Request) -> RequestState:
    # The SDK authenticates an httpx.Request; rebuild one from the ASGI request.
    httpx_request = httpx.Request(
        request.method,
        str(request.url),
        headers=dict(request.headers),
    )
    options = _make_authenticate_request_options()
    sdk = Clerk(bearer_auth=options.secret_key or "")
    return await run_in_threadpool(sdk.authenticate_request, httpx_request, options)


async def _fetch_clerk_profile(clerk_user_id: str) -> tuple[str | None, str | None]:
    server_url = _normalize_clerk_server_url(settings.clerk_api_url or "")
    clerk_user_id_log = clerk_user_id[-6:] if clerk_user_id else ""
    try:
        async with Clerk(
            bearer_auth=settings.clerk_secret_key.strip(),
            server_url=server_url,
            timeout_ms=5000,
        ) as clerk:
            profile = await clerk.users.get_async(user_id=clerk_user_id)
        return _extract_clerk_profile(profile)
    except (ClerkErrors, SDKError, httpx.HTTPError) as exc:
        logger.warning(
            "auth.clerk.profile.fetch_failed",
            extra={
                "clerk_user_id": clerk_user_id_log,
                "server_url": server_url,
                "error_type": exc.__class__.__name__,
            },
        )
    return None, None


async def _get_or_sync_user(
    session: AsyncSession,
    *,
    clerk_user_id: str,
    claims: dict[str, object],
) -> User:
    claim_email = _extract_claim_email(claims)
    claim_name = _extract_claim_name(claims)
    user, created = await crud.get_or_create(
        session,
        User,
        clerk_user_id=clerk_user_id,
        defaults={"email": claim_email, "name": claim_name},
    )

    profile_email: str | None = None
    profile_name: str | None = None
    # Only call Clerk while core profile fields are still missing.
    if created or not user.email or not user.name:
        profile_email, profile_name = await _fetch_clerk_profile(clerk_user_id)

    email = profile_email or claim_email
    name = profile_name or claim_name
    changed = False
    if email and user.email != email:
        user.email = email
        changed = True
    if not user.name and name:
        user.name = name
        changed = True
    if changed:
        session.add(user)
        await session.commit()
        await session.refresh(user)
        logger.info("auth.user.sync", extra={"clerk_user_id": clerk_user_id[-6:]})
    return user


async def _get_or_create_local_user(session: AsyncSession) -> User:
    user, _created = await crud.get_or_create(
        session,
        User,
        clerk_user_id=LOCAL_AUTH_USER_ID,
        defaults={"email": LOCAL_AUTH_EMAIL, "name": LOCAL_AUTH_NAME},
    )
    return user


async def _resolve_local_auth_context(
    *,
    request: Request,
    session: AsyncSession,
    required: bool,
) -> AuthContext | None:
    token = _extract_bearer_token(request.headers.get("Authorization"))
    expected = settings.local_auth_token.strip()
    if token is None or not expected or not compare_digest(token, expected):
        if required:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
        return None
    return AuthContext(user=await _get_or_create_local_user(session))


async def _resolve_clerk_auth_context(
    *,
    request: Request,
    session: AsyncSession,
    required: bool,
) -> AuthContext | None:
    request_state = await _authenticate_clerk_request(request)
    clerk_user_id: str | None = None
    claims: dict[str, object] = {}
    if request_state.status == AuthStatus.SIGNED_IN and isinstance(request_state.payload, dict):
        claims = {str(k): v for k, v in request_state.payload.items()}
        try:
            clerk_user_id = ClerkTokenPayload.model_validate(claims).sub
        except ValidationError:
            clerk_user_id = None
    if not clerk_user_id:
        if required:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
        return None
    user = await _get_or_sync_user(session, clerk_user_id=clerk_user_id, claims=claims)
    return AuthContext(user=user)


async def get_auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = SECURITY_DEP,
    session: AsyncSession = SESSION_DEP,
) -> AuthContext:
    """Resolve the authenticated user for the configured auth mode or raise 401."""
    if settings.auth_mode == AuthMode.LOCAL:
        context = await _resolve_local_auth_context(request=request, session=session, required=True)
    else:
        context = await _resolve_clerk_auth_context(request=request, session=session, required=True)
    if context is None:  # pragma: no cover
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    return context


async def get_auth_context_optional(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = SECURITY_DEP,
    session: AsyncSession = SESSION_DEP,
) -> AuthContext | None:
    """Resolve user context if available, otherwise return `None`."""
    if settings.auth_mode == AuthMode.LOCAL:
        return await _resolve_local_auth_context(request=request, session=session, required=False)
    return await _resolve_clerk_auth_context(request=request, session=session, required=False)
