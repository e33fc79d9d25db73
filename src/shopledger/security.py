from __future__ import annotations

import hashlib
import hmac
import re
import secrets

HASH_PREFIX = "pbkdf2_sha256$"


def hash_password(password: str, *, rounds: int = 200_000, salt: str | None = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt), rounds).hex()
    return f"{HASH_PREFIX}{rounds}${salt}${digest}"


def is_hashed(stored: str) -> bool:
    return stored.startswith(HASH_PREFIX)


def verify_password(stored: str | None, provided: str) -> bool:
    if stored is None:
        return False
    if is_hashed(stored):
        try:
            _algo, rounds_s, salt, digest = stored.split("$", 3)
            candidate = hashlib.pbkdf2_hmac(
                "sha256",
                provided.encode("utf-8"),
                bytes.fromhex(salt),
                int(rounds_s),
            ).hex()
            return hmac.compare_digest(candidate, digest)
        except ValueError:
            return False
    # legacy plaintext; callers re-hash after a successful match
    return hmac.compare_digest(stored.encode("utf-8"), provided.encode("utf-8"))


def password_problem(password: str, *, min_len: int) -> str | None:
    if len(password) < min_len:
        return f"Password must have at least {min_len} characters."
    if not re.search(r"[A-Za-z]", password):
        return "Password must include at least one letter."
    if not re.search(r"\d", password):
        return "Password must include at least one number."
    return None


def new_id() -> str:
    return secrets.token_hex(5)
