"""
User Service — sign-up, credential checks, lookups.
"""

import logging

from email_validator import EmailNotValidError, validate_email

from app.core.exceptions import AuthorizationError, ConflictError, ValidationError
from app.models import db
from app.models.auth import User
from app.services.realtime import publish_change
from app.services.role_service import get_user_role, provision_initial_role
from app.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)

PASSWORD_MIN_LENGTH = 8
DEFAULT_FULL_NAME = "New User"


def normalize_email(email: str) -> str:
    """Validate and normalise an email address (no DNS lookups)."""
    try:
        valid = validate_email((email or "").strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": "invalid"}) from e
    return valid.normalized.lower()


# ═══════════════════════════════════════════════════════════════
# Sign-up
# ═══════════════════════════════════════════════════════════════
def register_user(email: str, password: str, full_name: str | None = None) -> User:
    """Create an account and provision its starting role.

    The first account in the system becomes admin; every later one starts
    as student. A role requested by the client is never honoured here.

    Raises:
        ValidationError: bad email or short password.
        ConflictError: email already registered.
        TransientIOError: persistence failed.
    """
    email = normalize_email(email)
    if not password or len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters",
            details={"password": "too_short"},
        )
    if User.query.filter_by(email=email).first() is not None:
        raise ConflictError("User", "email", email)

    user = User(
        email=email,
        password_hash=hash_password(password),
        full_name=(full_name or "").strip() or DEFAULT_FULL_NAME,
    )
    db.session.add(user)
    db.session.flush()
    provision_initial_role(user)

    logger.info("Registered user %s", user.id)
    publish_change("auth", "SIGNED_UP", new={"user_id": user.id})
    return user


# ═══════════════════════════════════════════════════════════════
# Credentials
# ═══════════════════════════════════════════════════════════════
def authenticate_user(email: str, password: str) -> User:
    """Return the user for valid credentials.

    Unknown email and wrong password produce the same error.
    """
    try:
        email = normalize_email(email)
    except ValidationError:
        raise AuthorizationError("auth.login", message="Invalid email or password")

    user = User.query.filter_by(email=email).first()
    if user is None or not verify_password(password or "", user.password_hash):
        logger.info("Failed login attempt")
        raise AuthorizationError("auth.login", message="Invalid email or password")
    return user


def get_user_by_id(user_id: int) -> User | None:
    """Find a user by ID."""
    return db.session.get(User, user_id)


def user_profile(user: User) -> dict:
    """Public profile with the effective role from the Role Store."""
    d = user.to_dict()
    d["role"] = get_user_role(user.id)
    return d
