from __future__ import annotations

import bcrypt


BCRYPT_ROUNDS = 10


def hash_password(raw_password: str) -> str:
    # Salted bcrypt hash; the salt is embedded in the returned string.
    hashed = bcrypt.hashpw(raw_password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(raw_password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(raw_password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False
