"""
Feature Flags - Deterministic percentage rollouts.

Flag values arrive as an injected FeatureFlags value; nothing here reads the
environment. A user always lands in the same bucket for a given flag.
"""

from qa_engine.models.domain import FeatureFlags

DYNAMIC_PRICING = "dynamic_pricing"
PROGRESSIVE_PAYMENTS = "progressive_payments"


def _hash32(value: str) -> int:
    """31-multiplier string hash wrapped to a signed 32-bit integer."""
    h = 0
    for ch in value:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def rollout_bucket(flag_name: str, user_id: str) -> int:
    """Stable 0-99 bucket for a (flag, user) pair."""
    return abs(_hash32(f"{flag_name}:{user_id}")) % 100


def is_rollout_enabled(flag_name: str, user_id: str, percent: int) -> bool:
    """Whether a user falls inside a percentage rollout."""
    if percent <= 0:
        return False
    if percent >= 100:
        return True
    return rollout_bucket(flag_name, user_id) < percent


def is_feature_enabled(flags: FeatureFlags, flag_name: str, user_id: str | None = None) -> bool:
    """
    Resolve a flag for a user.

    A globally enabled flag is on for everyone. Otherwise the user must fall
    inside the flag's rollout percentage; anonymous callers never do.
    """
    if flag_name == DYNAMIC_PRICING:
        enabled, percent = flags.dynamic_pricing, flags.dynamic_pricing_rollout
    elif flag_name == PROGRESSIVE_PAYMENTS:
        enabled, percent = flags.progressive_payments, flags.progressive_payments_rollout
    else:
        raise ValueError(f"Unknown feature flag: {flag_name}")

    if enabled:
        return True
    if user_id is None:
        return False
    return is_rollout_enabled(flag_name, user_id, percent)
