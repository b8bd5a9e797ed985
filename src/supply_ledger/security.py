"""Credential checks, JWT issuance/verification and role authorization."""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import jwt
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from werkzeug.security import check_password_hash, generate_password_hash

from .config import Settings
from .errors import (
    ConflictError,
    ExpiredToken,
    Forbidden,
    InvalidCredentials,
    InvalidRefreshToken,
    InvalidToken,
    MalformedToken,
    MissingToken,
    Unauthenticated,
    UserNotFound,
    ValidationError,
)
from .models import User
from .values import Identity, Role, utcnow

logger = logging.getLogger(__name__)

_ACCESS = "access"
_REFRESH = "refresh"

# compared against when the username is unknown so both failure paths hash
_DUMMY_PASSWORD_HASH = generate_password_hash("supply-ledger-dummy-password")


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime


@dataclass(frozen=True)
class LoginResult:
    user: User
    tokens: TokenPair


def role_allowed(allowed_roles: Iterable[Role], actual_role: Role) -> bool:
    return Role(actual_role) in {Role(role) for role in allowed_roles}


def authorize(identity: Optional[Identity], allowed_roles: Iterable[Role]) -> Identity:
    if identity is None:
        raise Unauthenticated()
    if not role_allowed(allowed_roles, identity.role):
        raise Forbidden()
    return identity


class AuthService:
    """Registers users, logs them in and issues/verifies signed tokens."""

    def __init__(
        self,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._access_secret = settings.access_token_secret
        self._refresh_secret = settings.refresh_token_secret
        self._algorithm = settings.jwt_algorithm
        self.access_ttl = timedelta(seconds=settings.access_token_ttl)
        self.refresh_ttl = timedelta(seconds=settings.refresh_token_ttl)
        self._clock = clock

    # users --------------------------------------------------------------
    async def register(
        self, session: AsyncSession, username: str, password: str, role: Role = Role.USER
    ) -> User:
        username = username.strip()
        if not username:
            raise ValidationError.for_field("username", "Username is required")
        if not password:
            raise ValidationError.for_field("password", "Password is required")
        existing = await session.execute(select(User.id).where(User.username == username))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(f"User '{username}' already exists")
        user = User(
            username=username,
            password_hash=generate_password_hash(password),
            role=Role(role),
        )
        session.add(user)
        try:
            await session.flush()
        except IntegrityError as exc:
            await session.rollback()
            raise ConflictError(f"User '{username}' already exists") from exc
        logger.info("Registered user %s with role %s", user.username, user.role.value)
        return user

    async def get_user(self, session: AsyncSession, user_id: int) -> User:
        result = await session.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise UserNotFound(f"User {user_id} not found")
        return user

    async def login(self, session: AsyncSession, username: str, password: str) -> LoginResult:
        result = await session.execute(select(User).where(User.username == username.strip()))
        user = result.scalar_one_or_none()
        password_hash = user.password_hash if user is not None else _DUMMY_PASSWORD_HASH
        password_ok = check_password_hash(password_hash, password)
        if user is None or not password_ok:
            logger.info("Failed login attempt for %s", username)
            raise InvalidCredentials()
        logger.info("User %s logged in", user.username)
        return LoginResult(user=user, tokens=self.issue_tokens(user))

    async def refresh(self, session: AsyncSession, refresh_token: Optional[str]) -> TokenPair:
        if not refresh_token:
            raise InvalidRefreshToken(
                "No refresh token provided", code=InvalidRefreshToken.MISSING
            )
        try:
            claims = self._decode(refresh_token, self._refresh_secret, _REFRESH)
        except ExpiredToken as exc:
            raise InvalidRefreshToken(
                "Refresh token has expired", code=InvalidRefreshToken.EXPIRED
            ) from exc
        except (MalformedToken, InvalidToken) as exc:
            raise InvalidRefreshToken(code=InvalidRefreshToken.INVALID) from exc
        user = await self.get_user(session, int(claims["sub"]))
        return self.issue_tokens(user)

    # tokens -------------------------------------------------------------
    def issue_tokens(self, user: User) -> TokenPair:
        issued_at = self._clock()
        access_expires_at = issued_at + self.access_ttl
        refresh_expires_at = issued_at + self.refresh_ttl
        claims = {"sub": str(user.id), "role": Role(user.role).value}
        return TokenPair(
            access_token=self._encode(
                claims, self._access_secret, _ACCESS, issued_at, access_expires_at
            ),
            refresh_token=self._encode(
                claims, self._refresh_secret, _REFRESH, issued_at, refresh_expires_at
            ),
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
        )

    def verify_access_token(self, token: Optional[str]) -> Identity:
        if not token:
            raise MissingToken()
        claims = self._decode(token, self._access_secret, _ACCESS)
        return Identity(user_id=int(claims["sub"]), role=Role(claims["role"]))

    async def authenticate(self, session: AsyncSession, token: Optional[str]) -> Identity:
        """Verify ``token`` and return the caller with the role currently stored."""

        claims = self.verify_access_token(token)
        result = await session.execute(select(User.role).where(User.id == claims.user_id))
        role = result.scalar_one_or_none()
        if role is None:
            raise InvalidToken("Token subject no longer exists")
        if Role(role) != claims.role:
            logger.info(
                "Role of user %s changed from %s to %s since token issue",
                claims.user_id,
                claims.role.value,
                Role(role).value,
            )
        return Identity(user_id=claims.user_id, role=Role(role))

    def _encode(
        self,
        claims: Dict[str, Any],
        secret: str,
        token_type: str,
        issued_at: datetime,
        expires_at: datetime,
    ) -> str:
        payload = dict(claims, type=token_type, iat=issued_at, exp=expires_at)
        return jwt.encode(payload, secret, algorithm=self._algorithm)

    def _decode(self, token: str, secret: str, token_type: str) -> Dict[str, Any]:
        try:
            claims = jwt.decode(
                token,
                secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise ExpiredToken() from exc
        except jwt.InvalidSignatureError as exc:
            raise InvalidToken() from exc
        except jwt.DecodeError as exc:
            raise MalformedToken() from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidToken() from exc
        if claims.get("type") != token_type:
            raise InvalidToken(f"Expected a {token_type} token")
        try:
            int(claims["sub"])
            Role(claims.get("role"))
        except (TypeError, ValueError) as exc:
            raise InvalidToken() from exc
        return claims


__all__ = [
    "AuthService",
    "LoginResult",
    "TokenPair",
    "authorize",
    "role_allowed",
]
