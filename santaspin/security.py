from __future__ import annotations

import logging

from flask import current_app
from passlib.context import CryptContext

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
)


def hash_passkey(passphrase: str) -> str:
    """Argon2 hash suitable for SANTA_ADMIN_PASSKEY_HASH."""
    return pwd_context.hash(passphrase)


def verify_passkey(passphrase: str, stored_hash: str) -> bool:
    if not passphrase or not stored_hash:
        return False
    try:
        return pwd_context.verify(passphrase, stored_hash)
    except ValueError:
        logger.error("SANTA_ADMIN_PASSKEY_HASH is not a valid argon2 hash")
        return False


def check_admin_passkey(passphrase: str) -> bool:
    stored = (current_app.config.get("SANTA_ADMIN_PASSKEY_HASH") or "").strip()
    if not stored:
        logger.warning("Admin login attempted but SANTA_ADMIN_PASSKEY_HASH is not configured")
        return False
    return verify_passkey(passphrase, stored)
