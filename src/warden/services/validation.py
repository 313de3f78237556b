"""Field rules for user, role and permission input.

Every checker collects per-field messages and raises a single
ValidationFailedError carrying them under ``details["fields"]``.
"""

from __future__ import annotations

import re

from warden.core.errors import ValidationFailedError

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-\(\)]{10,15}$")
ROLE_NAME_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*$")
RESOURCE_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")
ACTION_PATTERN = RESOURCE_PATTERN
PERMISSION_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*:[a-z][a-z0-9_]*$")

EMAIL_MAX_LENGTH = 255
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
# argon2 has no input limit; 72 keeps parity with bcrypt-era clients
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 72
ROLE_NAME_MIN_LENGTH = 2
ROLE_NAME_MAX_LENGTH = 50
DESCRIPTION_MAX_LENGTH = 255
PERMISSION_NAME_MIN_LENGTH = 3
PERMISSION_NAME_MAX_LENGTH = 100
RESOURCE_MIN_LENGTH = 2
RESOURCE_MAX_LENGTH = 50

STANDARD_ACTIONS = frozenset(
    {
        "create",
        "read",
        "update",
        "delete",
        "list",
        "manage",
        "execute",
        "view",
        "edit",
        "publish",
        "approve",
    }
)


def normalize_email(email: str) -> str:
    """Trim and lowercase an email address."""
    return email.strip().lower()


def normalize_role_name(name: str) -> str:
    """Trim and uppercase a role name (lookups are case-insensitive)."""
    return name.strip().upper()


def email_error(email: str) -> str | None:
    """Return a message if the (normalized) email is malformed."""
    if not email:
        return "Email is required"
    if len(email) > EMAIL_MAX_LENGTH:
        return f"Email must be at most {EMAIL_MAX_LENGTH} characters"
    if not EMAIL_PATTERN.match(email):
        return "Invalid email format"
    return None


def name_error(name: str) -> str | None:
    """Return a message if the display name length is out of range."""
    length = len(name.strip())
    if length < NAME_MIN_LENGTH or length > NAME_MAX_LENGTH:
        return f"Name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters"
    return None


def phone_error(phone: str | None) -> str | None:
    """Return a message if an optional phone number is malformed."""
    if phone is None or phone == "":
        return None
    if not PHONE_PATTERN.match(phone):
        return "Invalid phone number format"
    return None


def password_error(password: str) -> str | None:
    """Return a message if the password length is out of range."""
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"Password must be at least {PASSWORD_MIN_LENGTH} characters"
    if len(password) > PASSWORD_MAX_LENGTH:
        return f"Password must be at most {PASSWORD_MAX_LENGTH} characters"
    return None


def _raise_if_errors(errors: dict[str, str | None]) -> None:
    found = {field: message for field, message in errors.items() if message}
    if found:
        raise ValidationFailedError.for_fields(found)


def validate_registration(email: str, name: str, phone: str | None, password: str) -> None:
    """Validate registration input (email must already be normalized).

    Raises:
        ValidationFailedError: With one entry per invalid field.
    """
    _raise_if_errors(
        {
            "email": email_error(email),
            "name": name_error(name),
            "phone": phone_error(phone),
            "password": password_error(password),
        }
    )


def validate_profile(name: str, phone: str | None) -> None:
    """Validate editable profile fields."""
    _raise_if_errors({"name": name_error(name), "phone": phone_error(phone)})


def validate_password(password: str, field: str = "new_password") -> None:
    """Validate a single password field."""
    _raise_if_errors({field: password_error(password)})


def is_valid_action(action: str) -> bool:
    """Check an action against the standard set.

    Actions must be standard, or extend a standard action as a prefix or
    suffix (``publish_draft``, ``bulk_delete``).
    """
    if not ACTION_PATTERN.match(action):
        return False
    if action in STANDARD_ACTIONS:
        return True
    return any(
        action.startswith(f"{std}_") or action.endswith(f"_{std}") for std in STANDARD_ACTIONS
    )


def validate_role(name: str, description: str | None) -> None:
    """Validate role name (already uppercased) and description."""
    errors: dict[str, str | None] = {}
    if not ROLE_NAME_MIN_LENGTH <= len(name) <= ROLE_NAME_MAX_LENGTH:
        errors["name"] = (
            f"Role name must be between {ROLE_NAME_MIN_LENGTH} and "
            f"{ROLE_NAME_MAX_LENGTH} characters"
        )
    elif not ROLE_NAME_PATTERN.match(name):
        errors["name"] = (
            "Role name must start with an uppercase letter and contain only "
            "uppercase letters, digits and underscores"
        )
    if description and len(description) > DESCRIPTION_MAX_LENGTH:
        errors["description"] = f"Description must be at most {DESCRIPTION_MAX_LENGTH} characters"
    _raise_if_errors(errors)


def validate_permission(resource: str, action: str, description: str | None) -> str:
    """Validate permission parts and return the composite name.

    Returns:
        The permission name ``resource:action``.
    """
    errors: dict[str, str | None] = {}
    if not RESOURCE_MIN_LENGTH <= len(resource) <= RESOURCE_MAX_LENGTH:
        errors["resource"] = (
            f"Resource must be between {RESOURCE_MIN_LENGTH} and "
            f"{RESOURCE_MAX_LENGTH} characters"
        )
    elif not RESOURCE_PATTERN.match(resource):
        errors["resource"] = "Resource must be lowercase letters, digits and underscores"
    if not is_valid_action(action):
        errors["action"] = (
            "Action must be a standard action or extend one "
            f"({', '.join(sorted(STANDARD_ACTIONS))})"
        )
    if description and len(description) > DESCRIPTION_MAX_LENGTH:
        errors["description"] = f"Description must be at most {DESCRIPTION_MAX_LENGTH} characters"

    name = f"{resource}:{action}"
    if not errors and not (
        PERMISSION_NAME_MIN_LENGTH <= len(name) <= PERMISSION_NAME_MAX_LENGTH
        and PERMISSION_NAME_PATTERN.match(name)
    ):
        errors["name"] = "Permission name must be in 'resource:action' format"
    _raise_if_errors(errors)
    return name
