"""Argon2id password hashing.

Cost parameters come from the ``auth`` settings so deployments (and tests)
can tune them without code changes.
"""
import logging

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError

from app.config import get_config

logger = logging.getLogger(__name__)


def _hasher() -> PasswordHasher:
    settings = get_config().auth
    return PasswordHasher(
        type=Type.ID,
        time_cost=settings.argon2_time_cost,
        memory_cost=settings.argon2_memory_cost,
        parallelism=1,
    )


def hash_password(password: str) -> str:
    """Return an encoded Argon2id hash of ``password``."""
    return _hasher().hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Check ``password`` against a stored hash. Malformed hashes never match."""
    try:
        return _hasher().verify(password_hash, password)
    except VerificationError:
        return False
    except InvalidHashError:
        logger.warning("[auth] Stored password hash is not a valid Argon2 hash")
        return False
