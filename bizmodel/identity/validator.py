"""
validator.py — Signup / password business rules.

Collects every violation before raising, so callers receive all errors in
one response rather than discovering them one at a time.

Rules:
  1. email     looks like local@domain.tld
  2. names     non-empty after stripping
  3. password  >= 8 chars, at least one lowercase, one uppercase, one digit
"""
import logging
import re

from bizmodel.errors import ValidationError

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_MIN_PASSWORD_LENGTH = 8
# bcrypt only accepts the first 72 bytes
_MAX_PASSWORD_BYTES = 72


def password_issues(password: str) -> list[str]:
    issues = []
    if len(password) < _MIN_PASSWORD_LENGTH:
        issues.append(f"Password must be at least {_MIN_PASSWORD_LENGTH} characters long")
    if len(password.encode("utf-8")) > _MAX_PASSWORD_BYTES:
        issues.append(f"Password must be at most {_MAX_PASSWORD_BYTES} bytes long")
    if not re.search(r"[a-z]", password):
        issues.append("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        issues.append("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        issues.append("Password must contain at least one number")
    return issues


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email.strip()))


def _raise_if_any(violations: list[dict[str, str]]) -> None:
    if not violations:
        return
    logger.info("Validation failed fields=%s", [v["field"] for v in violations])
    message = violations[0]["issue"] if len(violations) == 1 else "Invalid input data"
    raise ValidationError(message, details=violations, expose_details=True)


def validate_signup(email: str, password: str, first_name: str, last_name: str) -> None:
    """Raises ValidationError listing every {field, issue} violation."""
    violations: list[dict[str, str]] = []
    if not is_valid_email(email):
        violations.append({"field": "email", "issue": "Invalid email address"})
    if not first_name.strip():
        violations.append({"field": "firstName", "issue": "First name is required"})
    if not last_name.strip():
        violations.append({"field": "lastName", "issue": "Last name is required"})
    violations.extend({"field": "password", "issue": i} for i in password_issues(password))
    _raise_if_any(violations)


def validate_new_password(password: str) -> None:
    _raise_if_any([{"field": "newPassword", "issue": i} for i in password_issues(password)])


def validate_email(email: str) -> None:
    if not is_valid_email(email):
        _raise_if_any([{"field": "email", "issue": "Invalid email address"}])
