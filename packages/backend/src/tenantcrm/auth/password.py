"""Password hashing utilities.

bcrypt handles salting per hash and is deliberately slow. The work
factor comes from settings (12 by default, never lower in production);
a stored hash with a lower cost is reported by needs_rehash() so a
successful login can upgrade it.
"""

import bcrypt

from tenantcrm.config import settings

# bcrypt ignores everything past 72 bytes
_MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    """Hash a password with bcrypt at the configured work factor."""
    pw_bytes = password.encode("utf-8")[:_MAX_PASSWORD_BYTES]
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash.

    Returns False for a mismatch and for anything that is not a valid
    bcrypt hash; never raises.
    """
    if not password_hash:
        return False
    try:
        pw_bytes = password.encode("utf-8")[:_MAX_PASSWORD_BYTES]
        return bcrypt.checkpw(pw_bytes, password_hash.encode("utf-8"))
    except (ValueError, TypeError, AttributeError):
        return False


def needs_rehash(password_hash: str) -> bool:
    """Check if a hash was made with a lower cost than currently configured."""
    try:
        # Format: $2b$<cost>$<salt+digest>
        cost = int(password_hash.split("$")[2])
    except (IndexError, ValueError, AttributeError):
        return False
    return cost < settings.bcrypt_rounds
