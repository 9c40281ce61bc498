import bcrypt

from errors import ValidationError

MAX_PASSWORD_BYTES = 72


def _encode(raw: str) -> bytes:
    encoded = raw.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValidationError("Password must be at most 72 bytes")
    return encoded


def hash_password(raw: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(_encode(raw), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(raw: str, hashed: str) -> bool:
    try:
        candidate = _encode(raw)
    except ValidationError:
        return False
    return bcrypt.checkpw(candidate, hashed.encode("utf-8"))
