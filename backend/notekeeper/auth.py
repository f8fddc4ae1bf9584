"""Authentication gate: credentials in, signed access tokens out.

Every protected operation starts with ``AuthGate.resolve`` turning the
caller's token into ``UserClaims``; the note service only ever sees the
resolved user id.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from . import security
from .entities import User, UserClaims
from .errors import AuthError, ConflictError, ValidationError
from .store import Store, normalize_provider, normalize_id

logger = logging.getLogger(__name__)

PASSWORD_MIN_LENGTH = 6
# bcrypt only looks at the first 72 bytes.
PASSWORD_MAX_LENGTH = 72


def _validate_registration(name: str, email: str, password: str) -> Tuple[str, str]:
    cleaned_name = str(name or "").strip()
    if not cleaned_name:
        raise ValidationError("Name is required", field="name")
    cleaned_email = str(email or "").strip()
    if "@" not in cleaned_email or cleaned_email.startswith("@") or cleaned_email.endswith("@"):
        raise ValidationError("Invalid email format", field="email")
    if not isinstance(password, str) or len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters", field="password"
        )
    if len(password.encode("utf-8")) > PASSWORD_MAX_LENGTH:
        raise ValidationError(
            f"Password must be at most {PASSWORD_MAX_LENGTH} bytes", field="password"
        )
    return cleaned_name, cleaned_email


class AuthGate:
    def __init__(
        self,
        store: Store,
        secret_key: str = security.SECRET_KEY,
        expire_hours: int = security.ACCESS_TOKEN_EXPIRE_HOURS,
    ):
        self.store = store
        self.secret_key = secret_key
        self.expire_hours = expire_hours

    def register(self, name: str, email: str, password: str) -> Tuple[str, User]:
        name, email = _validate_registration(name, email, password)
        # The store enforces uniqueness again on insert.
        if self.store.get_user_by_email(email) is not None:
            raise ConflictError("User with this email already exists", field="email")
        user = self.store.create_user(name=name, email=email, password=password)
        logger.info("Registered user id=%s", user.id)
        return self.issue_token(user), user

    def login(self, email: str, password: str) -> Tuple[str, User]:
        user = self.store.get_user_by_email(str(email or "").strip())
        if user is None or not user.has_password:
            logger.info("Login rejected")
            raise AuthError(AuthError.INVALID_CREDENTIALS)
        if not security.verify_password(password or "", user.password_hash):
            logger.info("Login rejected")
            raise AuthError(AuthError.INVALID_CREDENTIALS)
        return self.issue_token(user), user

    def issue_token(self, user: User, expires_delta: Optional[timedelta] = None) -> str:
        claims = {"sub": user.id, "email": user.email, "name": user.name}
        return security.create_access_token(
            claims,
            secret_key=self.secret_key,
            expires_delta=expires_delta or timedelta(hours=self.expire_hours),
        )

    def resolve(self, token: Optional[str]) -> UserClaims:
        if not token:
            raise AuthError(AuthError.INVALID_TOKEN)
        try:
            payload = security.decode_access_token(token, secret_key=self.secret_key)
            user_id = normalize_id(payload.get("sub"))
        except (ValueError, ValidationError) as exc:
            raise AuthError(AuthError.INVALID_TOKEN) from exc
        return UserClaims(
            user_id=user_id,
            email=str(payload.get("email") or ""),
            name=str(payload.get("name") or ""),
        )

    def social_sign_in(self, profile: Dict[str, Any]) -> Tuple[str, User]:
        """Find or create the account behind an already verified provider profile.

        Lookup order: provider id, then e-mail (linking the provider to that
        account), then a new password-less account.
        """
        provider = normalize_provider(profile.get("provider"))
        provider_id = str(profile.get("provider_id") or "").strip()
        if not provider_id:
            raise ValidationError("provider_id is required", field="provider_id")

        user = self.store.get_user_by_provider(provider, provider_id)
        if user is None:
            user = self._link_or_create(provider, provider_id, profile)
        return self.issue_token(user), user

    def _link_or_create(self, provider: str, provider_id: str, profile: Dict[str, Any]) -> User:
        email = str(profile.get("email") or "").strip()
        if email:
            existing = self.store.get_user_by_email(email)
            if existing is not None:
                logger.info("Linking %s account to user id=%s", provider, existing.id)
                linked = self.store.link_provider(existing.id, provider, provider_id)
                if linked is not None:
                    return linked
        else:
            email = f"{provider}_{provider_id}@example.com"

        name = str(profile.get("display_name") or "").strip() or f"{provider.capitalize()} User"
        try:
            user = self.store.create_user(
                name=name,
                email=email,
                provider_ids={provider: provider_id},
                avatar=profile.get("avatar_url"),
            )
        except ConflictError:
            # A concurrent sign-in created the account first.
            user = self.store.get_user_by_provider(provider, provider_id)
            if user is None:
                raise
            return user
        logger.info("Created %s account user id=%s", provider, user.id)
        return user
