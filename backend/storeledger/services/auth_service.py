# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every sale, adjustment and closing must be attributable to a user.
Uses bcrypt for secure password hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Account locked for LOCKOUT_DURATION after MAX_FAILED_ATTEMPTS bad passwords
- Session tokens managed separately (see session_service.py)
"""

import bcrypt
import re
from datetime import timedelta
from ..extensions import db
from ..models import User, ROLES
from storeledger.time_utils import utcnow


# Configuration constants
MAX_FAILED_ATTEMPTS = 5
LOCKOUT_DURATION = timedelta(minutes=30)


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class AccountLockedError(Exception):
    """Raised when a login is attempted on a temporarily locked account."""

    def __init__(self, seconds_remaining: int):
        super().__init__("Account temporarily locked due to too many failed login attempts")
        self.seconds_remaining = seconds_remaining


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() compares in constant time.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash
        return False


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def create_user(email: str, password: str, role: str = "OPERATOR", name: str | None = None) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises:
        ValueError: If the email is taken or the role is unknown
        PasswordValidationError: If password doesn't meet requirements
    """
    email = normalize_email(email)
    if not email or "@" not in email:
        raise ValueError("A valid email is required")

    role = (role or "").strip().upper()
    if role not in ROLES:
        raise ValueError(f"Role must be one of {', '.join(ROLES)}")

    existing = db.session.query(User).filter(User.email == email).first()
    if existing:
        raise ValueError("Email already exists")

    # Hash password with bcrypt (validates strength automatically)
    password_hash = hash_password(password)

    user = User(
        email=email,
        name=(name or "").strip() or None,
        password_hash=password_hash,
        role=role,
        is_active=True,
        failed_login_attempts=0,
    )

    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Authenticate user with email and password.

    Returns User if credentials valid, None otherwise.
    Raises AccountLockedError while the account is locked.

    A wrong password increments failed_login_attempts; reaching
    MAX_FAILED_ATTEMPTS locks the account for LOCKOUT_DURATION.
    A successful login clears the counter and updates last_login_at.
    """
    user = db.session.query(User).filter(
        User.email == normalize_email(email),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    now = utcnow()
    if user.locked_until and user.locked_until > now:
        raise AccountLockedError(int((user.locked_until - now).total_seconds()))

    if not verify_password(password or "", user.password_hash):
        user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
        if user.failed_login_attempts >= MAX_FAILED_ATTEMPTS:
            user.locked_until = now + LOCKOUT_DURATION
            user.failed_login_attempts = 0
        db.session.commit()
        return None

    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_login_at = now
    db.session.commit()
    return user
