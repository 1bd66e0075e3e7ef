"""
Content Sanitizer - Strips contact-evasion content from free text.

Pure text transform. Detection runs in a fixed precedence:
spelled-out digits, contact phrases, URLs, phone numbers, emails, handles.
Passes repeat until the text stops changing, so sanitizing already
sanitized text is a no-op.
"""

import re

from qa_engine.models.api import SanitizationFlagType
from qa_engine.models.domain import SanitizationFlag, SanitizationResult

CONTACT_PLACEHOLDER = "[contact removed]"
LINK_PLACEHOLDER = "[link removed]"
PHONE_PLACEHOLDER = "[phone removed]"
EMAIL_PLACEHOLDER = "[email removed]"
HANDLE_PLACEHOLDER = "[handle removed]"

# (555) 123-4567, 555.123.4567, +1-555-123-4567
PHONE_RE = re.compile(r"(\+?1?[-.\s]?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4})")
EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
URL_RE = re.compile(r"(?:https?://|www\.)[^\s<>\"')\]]+", re.IGNORECASE)
HANDLE_RE = re.compile(r"(^|\s)@([a-zA-Z0-9_]{2,30})(?=\s|$|[.,!?])")

CONTACT_PHRASE_RES = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"call\s+me\s+(?:at\s+)?(?:on\s+)?(.{5,30})",
        r"text\s+me\s+(?:at\s+)?(?:on\s+)?(.{5,30})",
        r"my\s+(?:phone\s+)?number\s+is\s+(.{5,30})",
        r"reach\s+me\s+(?:at\s+)?(?:on\s+)?(.{5,30})",
        r"contact\s+me\s+(?:at\s+)?(?:on\s+)?(.{5,30})",
        r"(?:here(?:'s|s)?\s+my|my)\s+(?:cell|mobile|phone|number|email|contact)\s*[:.]?\s*(.{5,30})",
        r"(?:find|add|follow|message|dm|hit)\s+me\s+(?:on|at|up\s+on)\s+(.{5,30})",
        r"(?:whatsapp|signal|telegram|venmo|cashapp|zelle)\s*[:.]?\s*(.{5,30})",
    )
)

DIGIT_WORDS = ("zero", "one", "two", "three", "four", "five", "six", "seven", "eight", "nine", "oh")
_DIGIT_ALT = "|".join(DIGIT_WORDS)
# Seven or more digit words in a row: "five five five, one two three, four five six seven"
SPELLED_NUMBER_RE = re.compile(
    rf"\b(?:{_DIGIT_ALT})\b(?:[\s,.-]+\b(?:{_DIGIT_ALT})\b){{6,}}",
    re.IGNORECASE,
)

HANDLE_SKIP_WORDS = frozenset({"here", "all", "everyone", "channel"})

MAX_PASSES = 8


def _sanitize_pass(text: str, flags: list[SanitizationFlag]) -> str:
    def replace_spelled(match: re.Match[str]) -> str:
        flags.append(SanitizationFlag(SanitizationFlagType.SPELLED_NUMBER, match.group(0).strip()))
        return CONTACT_PLACEHOLDER

    def replace_phrase(match: re.Match[str]) -> str:
        flags.append(SanitizationFlag(SanitizationFlagType.CONTACT_PHRASE, match.group(0).strip()))
        return CONTACT_PLACEHOLDER

    def replace_url(match: re.Match[str]) -> str:
        flags.append(SanitizationFlag(SanitizationFlagType.URL, match.group(0)))
        return LINK_PLACEHOLDER

    def replace_phone(match: re.Match[str]) -> str:
        flags.append(SanitizationFlag(SanitizationFlagType.PHONE, match.group(0)))
        return PHONE_PLACEHOLDER

    def replace_email(match: re.Match[str]) -> str:
        flags.append(SanitizationFlag(SanitizationFlagType.EMAIL, match.group(0)))
        return EMAIL_PLACEHOLDER

    def replace_handle(match: re.Match[str]) -> str:
        prefix, handle = match.group(1), match.group(2)
        if handle.lower() in HANDLE_SKIP_WORDS:
            return match.group(0)
        flags.append(SanitizationFlag(SanitizationFlagType.SOCIAL_HANDLE, f"@{handle}"))
        return f"{prefix}{HANDLE_PLACEHOLDER}"

    text = SPELLED_NUMBER_RE.sub(replace_spelled, text)
    for pattern in CONTACT_PHRASE_RES:
        text = pattern.sub(replace_phrase, text)
    text = URL_RE.sub(replace_url, text)
    text = PHONE_RE.sub(replace_phone, text)
    text = EMAIL_RE.sub(replace_email, text)
    return HANDLE_RE.sub(replace_handle, text)


def sanitize(content: str | None) -> SanitizationResult:
    """
    Redact contact information from free text.

    Never raises: non-string input yields empty text and no flags.
    """
    if not isinstance(content, str):
        return SanitizationResult(sanitized="", flags=())

    flags: list[SanitizationFlag] = []
    text = content
    for _ in range(MAX_PASSES):
        before = len(flags)
        text = _sanitize_pass(text, flags)
        if len(flags) == before:
            break

    return SanitizationResult(sanitized=text, flags=tuple(flags))
