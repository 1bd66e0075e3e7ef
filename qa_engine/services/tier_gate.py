"""
Tier Gate - Decides whether an asker's next message needs an upsell.

Tier 1 covers the initial answer and the first follow-ups. The message that
reaches the tier 2 threshold requires tier 2, the one that reaches the tier 3
threshold requires tier 3. Expert messages and free questions are never gated.
"""

from collections.abc import Iterable

from qa_engine.exceptions import ValidationError
from qa_engine.models.api import ParticipantRole
from qa_engine.models.domain import (
    FeatureFlags,
    MarketplaceConfig,
    TierDefinition,
    TierGateResult,
)
from qa_engine.services.feature_flags import PROGRESSIVE_PAYMENTS, is_feature_enabled
from qa_engine.services.pricing import split_price

MIN_TIER = 1
MAX_TIER = 3

_DEFAULT_CONFIG = MarketplaceConfig()


def tier_definitions(config: MarketplaceConfig = _DEFAULT_CONFIG) -> dict[int, TierDefinition]:
    """The priced conversation tiers."""
    return {
        1: TierDefinition(tier=1, label="Initial answer + 2 follow-ups", additional_cents=0),
        2: TierDefinition(
            tier=2, label="Extended guidance", additional_cents=config.tier2_additional_cents
        ),
        3: TierDefinition(
            tier=3, label="Deep-dive consultation", additional_cents=config.tier3_additional_cents
        ),
    }


def check_tier_gate(
    current_tier: int,
    diyer_message_count: int,
    price_cents: int,
    config: MarketplaceConfig = _DEFAULT_CONFIG,
) -> TierGateResult:
    """
    Pure gate decision for the asker's next message.

    diyer_message_count is the number of asker messages already sent, so the
    next message is number diyer_message_count + 1.
    """
    if price_cents == 0:
        return TierGateResult(
            blocked=False, current_tier=current_tier, diyer_message_count=diyer_message_count
        )

    definitions = tier_definitions(config)
    next_message = diyer_message_count + 1

    for tier, threshold in (
        (2, config.tier2_message_threshold),
        (3, config.tier3_message_threshold),
    ):
        if current_tier < tier and next_message >= threshold:
            return TierGateResult(
                blocked=True,
                current_tier=current_tier,
                diyer_message_count=diyer_message_count,
                next_tier=tier,
                upgrade_cost_cents=definitions[tier].additional_cents,
                upgrade_description=definitions[tier].label,
            )

    return TierGateResult(
        blocked=False, current_tier=current_tier, diyer_message_count=diyer_message_count
    )


def upgrade_cost_cents(
    current_tier: int, target_tier: int, config: MarketplaceConfig = _DEFAULT_CONFIG
) -> int:
    """Sum of the additional price of every tier between current and target."""
    if not current_tier < target_tier <= MAX_TIER:
        raise ValidationError(
            f"target_tier must be in ({current_tier}, {MAX_TIER}], got {target_tier}"
        )
    definitions = tier_definitions(config)
    return sum(definitions[t].additional_cents for t in range(current_tier + 1, target_tier + 1))


def count_diyer_messages(sender_roles: Iterable[ParticipantRole]) -> int:
    return sum(1 for role in sender_roles if role == ParticipantRole.DIYER)


def total_expert_earnings(tier_payment_amounts: Iterable[int], fee_rate: float) -> int:
    """Expert share of every tier payment at a given fee rate."""
    return sum(split_price(amount, fee_rate).expert_payout_cents for amount in tier_payment_amounts)


class TierGate:
    """Tier gate bound to the injected flags and config."""

    def __init__(self, config: MarketplaceConfig, flags: FeatureFlags) -> None:
        self.config = config
        self.flags = flags

    def check(
        self,
        sender_role: ParticipantRole,
        current_tier: int,
        diyer_message_count: int,
        price_cents: int,
        user_id: str | None = None,
    ) -> TierGateResult:
        """Gate decision for one outgoing message."""
        if sender_role == ParticipantRole.EXPERT or not is_feature_enabled(
            self.flags, PROGRESSIVE_PAYMENTS, user_id
        ):
            return TierGateResult(
                blocked=False, current_tier=current_tier, diyer_message_count=diyer_message_count
            )
        return check_tier_gate(current_tier, diyer_message_count, price_cents, self.config)

    def upgrade_cost(self, current_tier: int, target_tier: int) -> int:
        return upgrade_cost_cents(current_tier, target_tier, self.config)
