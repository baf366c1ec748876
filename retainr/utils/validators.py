import re

# Simple, pragmatic patterns
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.\-]{3,64}$")
_ACCOUNT_RE = re.compile(r"^acct_[A-Za-z0-9]+$")

MIN_PASSWORD_LENGTH = 8


def clean_str(val: str | None, max_len: int = 255) -> str | None:
    """
    Collapse whitespace, trim, enforce max length. Returns None if empty after cleaning.
    """
    if val is None:
        return None
    s = re.sub(r"\s+", " ", str(val)).strip()
    if not s:
        return None
    return s[:max_len]


def is_valid_email(val: str | None) -> bool:
    return bool(val) and bool(_EMAIL_RE.match(val))


def is_valid_username(val: str | None) -> bool:
    return bool(val) and bool(_USERNAME_RE.match(val))


def is_valid_account_id(val: str | None) -> bool:
    return bool(val) and bool(_ACCOUNT_RE.match(val))


def registration_errors(email: str | None, username: str | None, password: str | None) -> list[str]:
    errors = []
    if not email:
        errors.append("Email is required.")
    elif not is_valid_email(email):
        errors.append("Email address is not valid.")
    if not username:
        errors.append("Username is required.")
    elif not is_valid_username(username):
        errors.append("Username must be 3-64 letters, digits, '.', '_' or '-'.")
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    return errors
