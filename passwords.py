from __future__ import annotations

import re

from werkzeug.security import check_password_hash, generate_password_hash

from utils import ValidationError


MIN_PASSWORD_LENGTH = 10

_HAS_LETTER = re.compile(r"[A-Za-z]")
_HAS_DIGIT = re.compile(r"\d")


def validate_password_policy(password: str) -> str:
    pwd = str(password or "")
    if not pwd:
        raise ValidationError("Password is required")
    if len(pwd) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(pwd) > 256:
        raise ValidationError("Password is too long")
    if not _HAS_LETTER.search(pwd) or not _HAS_DIGIT.search(pwd):
        raise ValidationError("Password must include letters and numbers")
    return pwd


def hash_password(password: str) -> str:
    pwd = validate_password_policy(password)
    # Werkzeug 3 defaults to scrypt; pin explicitly for stability.
    return generate_password_hash(pwd, method="scrypt", salt_length=16)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return check_password_hash(str(password_hash), str(password or ""))
    except ValueError:
        return False
