"""
Pricing Engine - Price, platform fee and expert payout for a question.

Two strategies, chosen once per request from the injected feature flags:
- DynamicPricing maps the difficulty tier to one of three price points
- FlatPricing charges one of two flat prices by code-regulated category

Every result goes through split_price so payout + fee == price always holds.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from qa_engine.models.api import DifficultyTier, PricingMode, SubscriptionTier
from qa_engine.models.domain import (
    AIContext,
    DifficultyResult,
    FeatureFlags,
    MarketplaceConfig,
    PriceSplit,
    PricingResult,
)
from qa_engine.services.difficulty import is_code_regulated, score_difficulty
from qa_engine.services.feature_flags import DYNAMIC_PRICING, is_feature_enabled

TIER_LABELS = {
    DifficultyTier.STANDARD: "Standard",
    DifficultyTier.COMPLEX: "Complex",
    DifficultyTier.SPECIALIST: "Specialist",
}

# Assumes roughly five minutes per answer
ANSWERS_PER_HOUR = 12


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def split_price(price_cents: int, fee_rate: float) -> PriceSplit:
    """Split a price into platform fee and expert payout."""
    if price_cents < 0:
        raise ValueError(f"Price cannot be negative: {price_cents}")
    if not 0 <= fee_rate < 1:
        raise ValueError(f"Fee rate must be in [0, 1): {fee_rate}")
    fee = round_half_up(Decimal(price_cents) * Decimal(str(fee_rate)))
    return PriceSplit(
        price_cents=price_cents,
        platform_fee_cents=fee,
        expert_payout_cents=price_cents - fee,
        fee_rate=fee_rate,
    )


def subscription_fee_rate(config: MarketplaceConfig, tier: SubscriptionTier) -> float:
    """Platform fee rate for an expert's subscription tier."""
    if tier == SubscriptionTier.PREMIUM:
        return config.premium_platform_fee_rate
    if tier == SubscriptionTier.PRO:
        return config.pro_platform_fee_rate
    return config.platform_fee_rate


def listed_fee_rate(config: MarketplaceConfig, mode: PricingMode) -> float:
    """Fee rate a question is listed at before any expert claims it."""
    if mode == PricingMode.FLAT:
        return config.legacy_platform_fee_rate
    return config.platform_fee_rate


def apply_subscription_fee_rate(
    config: MarketplaceConfig, price_cents: int, tier: SubscriptionTier
) -> PriceSplit:
    """Re-split a price using the expert's subscription fee rate."""
    return split_price(price_cents, subscription_fee_rate(config, tier))


def effective_hourly_rate_cents(result: PricingResult) -> int:
    return result.expert_payout_cents * ANSWERS_PER_HOUR


@dataclass(frozen=True)
class FlatPricing:
    """Legacy flat prices by code-regulated category."""

    config: MarketplaceConfig
    mode: PricingMode = PricingMode.FLAT

    def price(self, category: str, difficulty: DifficultyResult) -> PricingResult:
        price_cents = (
            self.config.legacy_code_specific_cents
            if is_code_regulated(category)
            else self.config.legacy_general_cents
        )
        return PricingResult(
            split=split_price(price_cents, listed_fee_rate(self.config, self.mode)),
            mode=self.mode,
            difficulty=difficulty,
        )


@dataclass(frozen=True)
class DynamicPricing:
    """Difficulty-tier price points with a flat platform fee rate."""

    config: MarketplaceConfig
    mode: PricingMode = PricingMode.DYNAMIC

    def tier_price_cents(self, tier: DifficultyTier) -> int:
        if tier == DifficultyTier.SPECIALIST:
            return self.config.specialist_price_cents
        if tier == DifficultyTier.COMPLEX:
            return self.config.complex_price_cents
        return self.config.standard_price_cents

    def price(self, category: str, difficulty: DifficultyResult) -> PricingResult:
        return PricingResult(
            split=split_price(
                self.tier_price_cents(difficulty.tier),
                listed_fee_rate(self.config, self.mode),
            ),
            mode=self.mode,
            difficulty=difficulty,
            tier_label=TIER_LABELS[difficulty.tier],
        )


PricingStrategy = FlatPricing | DynamicPricing


class PricingEngine:
    """Prices questions with the strategy selected for the asker."""

    def __init__(self, config: MarketplaceConfig, flags: FeatureFlags) -> None:
        self.config = config
        self.flags = flags

    def select_strategy(self, user_id: str | None) -> PricingStrategy:
        """Pick the pricing strategy once for this request."""
        if is_feature_enabled(self.flags, DYNAMIC_PRICING, user_id):
            return DynamicPricing(self.config)
        return FlatPricing(self.config)

    def quote(
        self,
        user_id: str | None,
        category: str,
        question_text: str,
        ai_context: AIContext | None = None,
        photo_count: int = 0,
    ) -> PricingResult:
        """Score the question and price it."""
        difficulty = score_difficulty(
            ai_context,
            category,
            question_text,
            photo_count,
            high_value_project_cents=self.config.high_value_project_cents,
        )
        return self.select_strategy(user_id).price(category, difficulty)
