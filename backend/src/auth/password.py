"""Volunteer and staff passwords: Argon2id hashes with a server-side pepper.

Rescue staff log in from shared barn tablets and phones, so stored hashes are
the main thing protecting a tenant's horse and adopter records if the
``users`` table ever leaks. The pepper (``PASSWORD_PEPPER``) lives only in
the application settings; a leaked table without it cannot be cracked
offline.

Hashes carry their own Argon2 parameters. When ``_hasher`` is tuned, older
hashes keep verifying and are upgraded on the user's next login
(``needs_rehash``).
"""

import re

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from config import get_settings


_hasher = PasswordHasher(
    memory_cost=65536,
    time_cost=3,
    parallelism=4,
    hash_len=32,
    salt_len=16,
    type=Type.ID,
)

MIN_PASSWORD_LENGTH = 8

# (pattern, message) pairs checked in order; the first miss is reported
_STRENGTH_RULES = [
    (r"[A-Z]", "Password must contain at least one uppercase letter"),
    (r"[a-z]", "Password must contain at least one lowercase letter"),
    (r"\d", "Password must contain at least one digit"),
]


def _peppered(password: str) -> str:
    pepper = get_settings().PASSWORD_PEPPER
    if not pepper:
        raise ValueError("PASSWORD_PEPPER is not configured")
    return password + pepper


def hash_password(password: str) -> str:
    """Hash a new password, e.g. when an admin invites a volunteer.

    Raises:
        ValueError: If the password is empty or no pepper is configured
    """
    if not password:
        raise ValueError("Password cannot be empty")
    return _hasher.hash(_peppered(password))


def verify_password(password: str, password_hash: str) -> bool:
    """Check a login attempt against the stored hash.

    Malformed or missing hashes count as a mismatch rather than an error, so
    a broken user row looks the same to the caller as a wrong password.
    """
    if not password or not password_hash:
        return False
    try:
        return _hasher.verify(password_hash, _peppered(password))
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def needs_rehash(password_hash: str) -> bool:
    """True when ``password_hash`` was made with other Argon2 parameters."""
    try:
        return _hasher.check_needs_rehash(password_hash)
    except InvalidHashError:
        return True


def validate_password_strength(password: str) -> tuple[bool, str]:
    """Check an invited user's initial password.

    Returns:
        (True, "") when acceptable, otherwise (False, reason). The reason is
        shown to the inviting admin as is.

    Example:
        >>> validate_password_strength("hayloft")
        (False, 'Password must be at least 8 characters long')
        >>> validate_password_strength("Stable4Horses")
        (True, '')
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"

    for pattern, message in _STRENGTH_RULES:
        if not re.search(pattern, password):
            return False, message
    return True, ""
