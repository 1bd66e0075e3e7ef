"""
Tests for the contact-information sanitizer.
"""

import pytest

from qa_engine.models.api import SanitizationFlagType
from qa_engine.services.sanitizer import (
    CONTACT_PLACEHOLDER,
    EMAIL_PLACEHOLDER,
    HANDLE_PLACEHOLDER,
    LINK_PLACEHOLDER,
    sanitize,
)


def flag_types(text: str) -> set[SanitizationFlagType]:
    return {flag.flag_type for flag in sanitize(text).flags}


class TestContactPhrases:
    def test_call_me_with_number(self):
        result = sanitize("call me at 555-123-4567")
        assert result.sanitized == CONTACT_PLACEHOLDER
        assert result.was_flagged
        assert result.flags[0].flag_type == SanitizationFlagType.CONTACT_PHRASE

    def test_messaging_app_mention(self):
        result = sanitize("whatsapp: plus one five five five")
        assert CONTACT_PLACEHOLDER in result.sanitized
        assert "whatsapp" not in result.sanitized.lower()


class TestPatterns:
    def test_email(self):
        result = sanitize("Email me at bob@example.com please")
        assert result.sanitized == f"Email me at {EMAIL_PLACEHOLDER} please"
        assert flag_types("Email me at bob@example.com please") == {SanitizationFlagType.EMAIL}

    def test_url(self):
        assert sanitize("Check www.example.com/guide for details").sanitized == (
            f"Check {LINK_PLACEHOLDER} for details"
        )

    def test_https_url(self):
        result = sanitize("See https://example.com/wiring.pdf")
        assert LINK_PLACEHOLDER in result.sanitized
        assert SanitizationFlagType.URL in {f.flag_type for f in result.flags}

    def test_phone_number(self):
        result = sanitize("Reach out: (555) 123-4567")
        assert "555" not in result.sanitized
        assert "4567" not in result.sanitized
        assert SanitizationFlagType.PHONE in {f.flag_type for f in result.flags}

    def test_social_handle(self):
        result = sanitize("Follow @diy_guy on insta")
        assert result.sanitized == f"Follow {HANDLE_PLACEHOLDER} on insta"

    def test_group_mentions_kept(self):
        result = sanitize("Thanks @everyone")
        assert result.sanitized == "Thanks @everyone"
        assert not result.was_flagged

    def test_spelled_out_number(self):
        result = sanitize("five five five one two three four five six seven")
        assert result.sanitized == CONTACT_PLACEHOLDER
        assert result.flags[0].flag_type == SanitizationFlagType.SPELLED_NUMBER

    def test_short_spelled_sequence_kept(self):
        """Six digit words is ordinary prose, not a number."""
        assert not sanitize("one two three four five six").was_flagged


class TestBehaviour:
    def test_clean_text_unchanged(self):
        text = "Turn off the breaker before removing the cover plate."
        result = sanitize(text)
        assert result.sanitized == text
        assert result.flags == ()

    @pytest.mark.parametrize("value", [None, 42, b"bytes"])
    def test_non_string_input(self, value: object):
        result = sanitize(value)  # type: ignore[arg-type]
        assert result.sanitized == ""
        assert not result.was_flagged

    @pytest.mark.parametrize(
        "text",
        [
            "call me at 555-123-4567",
            "Email me at bob@example.com please",
            "Follow @diy_guy on insta and visit www.example.com",
            "five five five one two three four five six seven",
        ],
    )
    def test_idempotent(self, text: str):
        once = sanitize(text).sanitized
        result = sanitize(once)
        assert result.sanitized == once
        assert not result.was_flagged
