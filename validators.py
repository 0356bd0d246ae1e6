"""
Pure input checks: identity numbers (Verhoeff), contact details, passwords,
uploaded files.

Validators report problems as booleans or lists of human-readable messages.
They only raise for ``None``, which is a caller bug rather than bad input;
values of the wrong type (a number where text is expected) are reported as
violations like any other malformed input.
"""
import re

from config import Config
from models import Category, Permission

IDENTITY_NUMBER_LENGTH = 12
PHONE_LENGTH = 10
PASSWORD_MIN_LENGTH = 6
MAX_FILE_SIZE = Config.MAX_FILE_SIZE

# Standard Verhoeff tables: dihedral group D5 multiplication, position
# permutation and inverse.
VERHOEFF_D = (
    (0, 1, 2, 3, 4, 5, 6, 7, 8, 9),
    (1, 2, 3, 4, 0, 6, 7, 8, 9, 5),
    (2, 3, 4, 0, 1, 7, 8, 9, 5, 6),
    (3, 4, 0, 1, 2, 8, 9, 5, 6, 7),
    (4, 0, 1, 2, 3, 9, 5, 6, 7, 8),
    (5, 9, 8, 7, 6, 0, 4, 3, 2, 1),
    (6, 5, 9, 8, 7, 1, 0, 4, 3, 2),
    (7, 6, 5, 9, 8, 2, 1, 0, 4, 3),
    (8, 7, 6, 5, 9, 3, 2, 1, 0, 4),
    (9, 8, 7, 6, 5, 4, 3, 2, 1, 0),
)
VERHOEFF_P = (
    (0, 1, 2, 3, 4, 5, 6, 7, 8, 9),
    (1, 5, 7, 6, 2, 8, 3, 0, 9, 4),
    (5, 8, 0, 3, 7, 9, 6, 1, 4, 2),
    (8, 9, 1, 6, 0, 4, 3, 5, 2, 7),
    (9, 4, 5, 3, 1, 2, 6, 8, 7, 0),
    (4, 2, 8, 6, 5, 7, 3, 9, 0, 1),
    (2, 7, 9, 3, 8, 0, 6, 4, 1, 5),
    (7, 0, 4, 6, 9, 1, 3, 2, 5, 8),
)
VERHOEFF_INV = (0, 4, 3, 2, 1, 5, 6, 7, 8, 9)

_DIGITS = re.compile(r"^[0-9]+$")
_EMAIL = re.compile(
    r"^[A-Za-z0-9!#$%&'*+/=?^_`{|}~-]+(?:\.[A-Za-z0-9!#$%&'*+/=?^_`{|}~-]+)*"
    r"@(?:[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?\.)+[A-Za-z]{2,}$"
)


def _require(value, name):
    if value is None:
        raise TypeError(f"{name} must not be None")


def verhoeff_checksum(digits: str) -> int:
    """Running Verhoeff checksum over a digit string, last digit first."""
    c = 0
    for i, ch in enumerate(reversed(digits)):
        c = VERHOEFF_D[c][VERHOEFF_P[i % 8][int(ch)]]
    return c


def verhoeff_check_digit(digits: str) -> str:
    """Digit to append to ``digits`` so the result validates."""
    c = 0
    for i, ch in enumerate(reversed(digits)):
        c = VERHOEFF_D[c][VERHOEFF_P[(i + 1) % 8][int(ch)]]
    return str(VERHOEFF_INV[c])


def validate_identity_number(value) -> bool:
    _require(value, "identity number")
    if not isinstance(value, str) or len(value) != IDENTITY_NUMBER_LENGTH:
        return False
    if not _DIGITS.match(value):
        return False
    return verhoeff_checksum(value) == 0


def validate_email(value) -> bool:
    _require(value, "email")
    return isinstance(value, str) and len(value) <= 254 and bool(_EMAIL.match(value))


def validate_phone(value) -> bool:
    """Exactly ten digits, no country code."""
    _require(value, "phone number")
    return isinstance(value, str) and len(value) == PHONE_LENGTH and bool(_DIGITS.match(value))


def validate_password(value) -> list:
    # Only a length rule; no complexity requirements are enforced.
    _require(value, "password")
    if not isinstance(value, str):
        return ["Password must be text."]
    if len(value) < PASSWORD_MIN_LENGTH:
        return [f"Password must be at least {PASSWORD_MIN_LENGTH} characters long."]
    return []


def validate_file(mime_type, byte_size, allowed_types=None, max_size=MAX_FILE_SIZE) -> list:
    _require(mime_type, "mime type")
    _require(byte_size, "byte size")
    allowed = allowed_types if allowed_types is not None else Config.ALLOWED_MIME_TYPES
    violations = []
    if mime_type not in allowed:
        violations.append(f"File type '{mime_type}' is not allowed.")
    if byte_size <= 0:
        violations.append("File is empty.")
    elif byte_size > max_size:
        violations.append(f"File exceeds the maximum size of {max_size // (1024 * 1024)} MB.")
    return violations


def validate_description(value, min_length=10) -> list:
    _require(value, "description")
    if not isinstance(value, str):
        return ["Description must be text."]
    if len(value.strip()) < min_length:
        return [f"Description must be at least {min_length} characters long."]
    return []


def validate_category(value) -> list:
    _require(value, "category")
    if not isinstance(value, str) or value not in {c.value for c in Category}:
        return [f"Unknown document category '{value}'."]
    return []


def validate_permission(value) -> list:
    _require(value, "permission")
    if not isinstance(value, str) or value not in {p.value for p in Permission}:
        return [f"Unknown permission '{value}'."]
    return []


def classify_subject(target):
    """'email', 'identity-number', or None when the target is neither."""
    _require(target, "share target")
    if validate_email(target):
        return "email"
    if validate_identity_number(target):
        return "identity-number"
    return None


def validate_registration(data) -> dict:
    """Field name -> first problem found, for a signup payload."""
    errors = {}
    email = data.get("email") or ""
    if not email:
        errors["email"] = "Email is required"
    elif not validate_email(email):
        errors["email"] = "Please enter a valid email address"

    password = data.get("password") or ""
    if not password:
        errors["password"] = "Password is required"
    else:
        problems = validate_password(password)
        if problems:
            errors["password"] = problems[0]

    phone = data.get("phone_number") or ""
    if phone and not validate_phone(phone):
        errors["phone_number"] = "Please enter a valid 10-digit phone number"

    identity_number = data.get("identity_number") or ""
    if identity_number and not validate_identity_number(identity_number):
        errors["identity_number"] = "Please enter a valid identity number"
    return errors
