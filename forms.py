# Input validation helpers
import re

from errors import ValidationFailure

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

NAME_MAX_LENGTH = 50
BIO_MAX_LENGTH = 500
POST_MAX_LENGTH = 2000
COMMENT_MAX_LENGTH = 1000
PASSWORD_MIN_LENGTH = 8
# bcrypt only looks at the first 72 bytes
PASSWORD_MAX_BYTES = 72


def validate_email(email):
    return isinstance(email, str) and len(email) <= 254 and bool(EMAIL_RE.match(email.strip()))


def validate_password(password):
    if not isinstance(password, str) or len(password) < PASSWORD_MIN_LENGTH:
        return False
    return len(password.encode('utf-8')) <= PASSWORD_MAX_BYTES


def normalize_email(email):
    return email.strip().lower()


def require_fields(data, *fields):
    """Raise ValidationFailure unless every field is present and non-empty."""
    if not isinstance(data, dict):
        raise ValidationFailure("Missing required fields")
    missing = [f for f in fields if data.get(f) in (None, '')]
    if missing:
        raise ValidationFailure("Missing required fields: " + ", ".join(missing))


def clean_text(value, field, max_length, required=True):
    """Trim a text field and check its length; returns the trimmed value."""
    if value is None:
        if required:
            raise ValidationFailure(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationFailure(f"{field} must be a string")
    value = value.strip()
    if required and not value:
        raise ValidationFailure(f"{field} is required")
    if len(value) > max_length:
        raise ValidationFailure(f"{field} must be at most {max_length} characters")
    return value


def parse_positive_int(value, field, default):
    if value is None or value == '':
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationFailure(f"{field} must be a positive integer")
    if number < 1:
        raise ValidationFailure(f"{field} must be a positive integer")
    return number
