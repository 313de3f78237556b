"""Tests for input field rules.

Tests cover:
- Email, name, phone and password checks and their boundaries
- Role and permission naming rules
- Error aggregation into a single ValidationFailedError
"""

import pytest

from warden.core.errors import ValidationFailedError
from warden.services.validation import (
    NAME_MAX_LENGTH,
    NAME_MIN_LENGTH,
    PASSWORD_MAX_LENGTH,
    PASSWORD_MIN_LENGTH,
    email_error,
    is_valid_action,
    name_error,
    normalize_email,
    normalize_role_name,
    password_error,
    phone_error,
    validate_password,
    validate_permission,
    validate_registration,
    validate_role,
)


class TestNormalization:
    """Tests for normalization helpers."""

    def test_email_trimmed_and_lowercased(self):
        """Test that emails compare equal regardless of case and padding."""
        assert normalize_email("  Alice@Example.COM ") == "alice@example.com"

    def test_role_name_uppercased(self):
        """Test that role names are case-insensitive."""
        assert normalize_role_name(" moderator ") == "MODERATOR"


class TestFieldRules:
    """Tests for single-field checks."""

    @pytest.mark.parametrize("email", ["a@b.io", "first.last+tag@sub.example.org"])
    def test_valid_emails(self, email):
        """Test that well-formed emails pass."""
        assert email_error(email) is None

    @pytest.mark.parametrize("email", ["", "plain", "a@b", "a@b.c", "two@@example.com"])
    def test_invalid_emails(self, email):
        """Test that malformed emails are reported."""
        assert email_error(email) is not None

    def test_name_boundaries(self):
        """Test the display name length limits."""
        assert name_error("x" * NAME_MIN_LENGTH) is None
        assert name_error("x" * NAME_MAX_LENGTH) is None
        assert name_error("x" * (NAME_MIN_LENGTH - 1)) is not None
        assert name_error("x" * (NAME_MAX_LENGTH + 1)) is not None

    def test_name_length_ignores_padding(self):
        """Test that surrounding whitespace does not count."""
        assert name_error("  a  ") is not None

    def test_phone_optional(self):
        """Test that a missing phone number is fine."""
        assert phone_error(None) is None
        assert phone_error("") is None

    def test_phone_format(self):
        """Test accepted and rejected phone formats."""
        assert phone_error("+33612345678") is None
        assert phone_error("(555) 123-4567") is None
        assert phone_error("12345") is not None
        assert phone_error("call me maybe") is not None

    def test_password_boundaries(self):
        """Test the password length limits."""
        assert password_error("p" * PASSWORD_MIN_LENGTH) is None
        assert password_error("p" * PASSWORD_MAX_LENGTH) is None
        assert password_error("p" * (PASSWORD_MIN_LENGTH - 1)) is not None
        assert password_error("p" * (PASSWORD_MAX_LENGTH + 1)) is not None


class TestAggregatedValidation:
    """Tests for multi-field validators."""

    def test_registration_collects_every_field(self):
        """Test that all invalid fields are reported together."""
        with pytest.raises(ValidationFailedError) as exc_info:
            validate_registration("bad", "x", "123", "short")
        fields = exc_info.value.details["fields"]
        assert set(fields) == {"email", "name", "phone", "password"}
        assert exc_info.value.message == "Validation failed"

    def test_registration_valid(self):
        """Test that valid registration input passes."""
        validate_registration("ann@example.com", "Ann", None, "Passw0rd!")

    def test_password_field_name(self):
        """Test that the offending field is named by the caller."""
        with pytest.raises(ValidationFailedError) as exc_info:
            validate_password("short", field="password")
        assert "password" in exc_info.value.details["fields"]


class TestRbacNaming:
    """Tests for role and permission naming rules."""

    @pytest.mark.parametrize("action", ["create", "list", "bulk_delete", "publish_draft"])
    def test_valid_actions(self, action):
        """Test standard actions and their extensions."""
        assert is_valid_action(action) is True

    @pytest.mark.parametrize("action", ["frobnicate", "Delete", "", "read-all"])
    def test_invalid_actions(self, action):
        """Test that unknown or malformed actions are refused."""
        assert is_valid_action(action) is False

    def test_role_name_pattern(self):
        """Test that role names are uppercase identifiers."""
        validate_role("SUPPORT_AGENT", None)
        with pytest.raises(ValidationFailedError):
            validate_role("9LIVES", None)
        with pytest.raises(ValidationFailedError):
            validate_role("A", None)

    def test_permission_name_composed(self):
        """Test that a permission name is resource:action."""
        assert validate_permission("reports", "export_read", None) == "reports:export_read"

    def test_permission_resource_rules(self):
        """Test that resources must be lowercase identifiers."""
        with pytest.raises(ValidationFailedError) as exc_info:
            validate_permission("Reports", "read", None)
        assert "resource" in exc_info.value.details["fields"]

    def test_permission_description_limit(self):
        """Test the description length limit."""
        with pytest.raises(ValidationFailedError) as exc_info:
            validate_permission("reports", "read", "d" * 256)
        assert "description" in exc_info.value.details["fields"]
