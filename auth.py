"""Registration, login and the per-request authorization gate."""

import logging
from typing import Optional

from fastapi import Request
from starlette.concurrency import run_in_threadpool

from errors import AuthenticationError, ConflictError, UnauthorizedError, ValidationError
from passwords import hash_password, verify_password
from services.google_oauth_service import GoogleProfile
from users import GOOGLE, LOCAL, User, UserStore, normalize_email

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


class AuthService:
    """Credential checks on top of a UserStore. Sessions are handled by the caller."""

    def __init__(self, user_store: UserStore, hash_rounds: Optional[int] = None) -> None:
        self.user_store = user_store
        self.hash_rounds = hash_rounds

    async def register(self, email: Optional[str], password: Optional[str], name: Optional[str] = None) -> User:
        if not email or not password:
            raise ValidationError("Email and password are required")
        normalized = normalize_email(email)
        if not normalized:
            raise ValidationError("Email and password are required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        existing = await run_in_threadpool(self.user_store.find_by_email, LOCAL, normalized)
        if existing is not None:
            raise ConflictError("An account with this email already exists")

        password_hash = await run_in_threadpool(hash_password, password, self.hash_rounds)
        user = await run_in_threadpool(
            lambda: self.user_store.create(
                provider=LOCAL,
                provider_id=f"{LOCAL}:{normalized}",
                email=normalized,
                name=(name or "").strip() or None,
                password_hash=password_hash,
            )
        )
        logger.info("Registered local user %s", normalized)
        return user

    async def login(self, email: Optional[str], password: Optional[str]) -> User:
        """Check local credentials.

        Unknown email and wrong password fail with the same error.
        """
        normalized = normalize_email(email)
        if not normalized or not password:
            raise AuthenticationError()
        user = await run_in_threadpool(self.user_store.find_by_email, LOCAL, normalized)
        if user is None or not user.password_hash:
            logger.info("Failed login for %s", normalized)
            raise AuthenticationError()
        if not await run_in_threadpool(verify_password, password, user.password_hash):
            logger.info("Failed login for %s", normalized)
            raise AuthenticationError()
        return user

    async def login_with_google(self, profile: GoogleProfile) -> User:
        """Return the user linked to a Google profile, creating it on first sign-in."""
        provider_id = f"{GOOGLE}:{profile.id}"
        user = await run_in_threadpool(self.user_store.find_by_provider_id, provider_id)
        if user is not None:
            return user
        try:
            user = await run_in_threadpool(
                lambda: self.user_store.create(
                    provider=GOOGLE,
                    provider_id=provider_id,
                    email=profile.email,
                    name=profile.name or None,
                    avatar_url=profile.avatar_url,
                )
            )
        except ConflictError:
            # A parallel callback for the same profile created it first.
            user = await run_in_threadpool(self.user_store.find_by_provider_id, provider_id)
            if user is None:
                raise
        logger.info("Created Google user %s", user.id)
        return user


# --- Request dependencies ---
def session_token(request: Request) -> Optional[str]:
    return request.cookies.get(request.app.state.settings.session_cookie_name)


async def current_user(request: Request) -> Optional[User]:
    """The principal behind the request's session cookie, if any."""
    token = session_token(request)
    if not token:
        return None
    return await run_in_threadpool(request.app.state.sessions.resolve, token)


async def require_user(request: Request) -> User:
    """Gate for protected routes: resolves the principal or raises UnauthorizedError."""
    user = await current_user(request)
    if user is None:
        raise UnauthorizedError()
    return user
