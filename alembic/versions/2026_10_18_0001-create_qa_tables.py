"""create qa marketplace tables

Revision ID: 2026_10_18_0001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_18_0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the Q&A marketplace schema."""

    # ========================================================================
    # Experts
    # ========================================================================
    op.create_table(
        'expert_profiles',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(255), nullable=False, unique=True),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('payout_account_id', sa.String(255), nullable=True),
        sa.Column('subscription_tier', sa.String(20), nullable=False, server_default='free'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('avg_rating', sa.Numeric(3, 2), nullable=True),
        sa.Column('reputation_score', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('reputation_level', sa.String(20), nullable=False, server_default='bronze'),
        sa.Column('correction_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('graduation_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reputation_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('reputation_score >= 0 AND reputation_score <= 100', name='ck_expert_reputation_range'),
    )
    op.create_index('idx_expert_profiles_available', 'expert_profiles', ['is_active', 'is_available'])

    op.create_table(
        'expert_specialties',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('expert_id', UUID(as_uuid=True), sa.ForeignKey('expert_profiles.id'), nullable=False),
        sa.Column('category', sa.String(50), nullable=False),

        sa.UniqueConstraint('expert_id', 'category', name='uq_expert_specialty'),
    )
    op.create_index('ix_expert_specialties_expert_id', 'expert_specialties', ['expert_id'])
    op.create_index('idx_expert_specialties_category', 'expert_specialties', ['category'])

    # ========================================================================
    # Questions
    # ========================================================================
    op.create_table(
        'qa_questions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('diyer_user_id', sa.String(255), nullable=False),
        sa.Column('expert_id', UUID(as_uuid=True), sa.ForeignKey('expert_profiles.id'), nullable=True),
        sa.Column('target_expert_id', UUID(as_uuid=True), sa.ForeignKey('expert_profiles.id'), nullable=True),

        sa.Column('question_text', sa.Text(), nullable=False),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('photo_count', sa.SmallInteger(), nullable=False, server_default='0'),

        sa.Column('ai_project_summary', sa.Text(), nullable=True),
        sa.Column('ai_safety_warnings', ARRAY(sa.String()), nullable=False, server_default='{}'),
        sa.Column('ai_pro_required', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('ai_skill_level', sa.String(50), nullable=True),
        sa.Column('ai_estimated_cost_cents', sa.BigInteger(), nullable=True),

        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('platform_fee_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expert_payout_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('difficulty_score', sa.SmallInteger(), nullable=False, server_default='1'),
        sa.Column('price_tier', sa.String(20), nullable=False, server_default='standard'),
        sa.Column('current_tier', sa.SmallInteger(), nullable=False, server_default='1'),

        sa.Column('status', sa.String(20), nullable=False, server_default='open'),
        sa.Column('question_mode', sa.String(10), nullable=False, server_default='pool'),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('claim_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('answer_text', sa.Text(), nullable=True),
        sa.Column('answered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_threaded', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('resolve_proposed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolve_proposed_by', sa.String(255), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('marked_not_helpful', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('not_helpful_at', sa.DateTime(timezone=True), nullable=True),

        sa.Column('payout_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('payment_method_id', sa.String(255), nullable=True),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('payment_intent_id', sa.String(255), nullable=True),
        sa.Column('credit_applied_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('refund_id', sa.String(255), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payout_transfer_id', sa.String(255), nullable=True),
        sa.Column('payout_released_at', sa.DateTime(timezone=True), nullable=True),

        sa.Column('parent_question_id', UUID(as_uuid=True), sa.ForeignKey('qa_questions.id'), nullable=True),
        sa.Column('is_second_opinion', sa.Boolean(), nullable=False, server_default=sa.text('false')),

        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('expert_payout_cents + platform_fee_cents = price_cents', name='ck_qa_price_split'),
        sa.CheckConstraint('price_cents >= 0', name='ck_qa_price_non_negative'),
        sa.CheckConstraint('credit_applied_cents >= 0', name='ck_qa_credit_non_negative'),
        sa.CheckConstraint('current_tier BETWEEN 1 AND 3', name='ck_qa_current_tier'),
        sa.CheckConstraint('difficulty_score BETWEEN 1 AND 10', name='ck_qa_difficulty_score'),
        sa.CheckConstraint(
            "expert_id IS NOT NULL OR status IN ('open', 'pending_payment', 'expired', 'cancelled')",
            name='ck_qa_expert_assigned',
        ),
        sa.CheckConstraint(
            "status IN ('pending_payment', 'open', 'claimed', 'answered', 'in_conversation', "
            "'resolve_proposed', 'accepted', 'disputed', 'expired', 'cancelled')",
            name='ck_qa_status',
        ),
        sa.CheckConstraint("question_mode IN ('pool', 'direct')", name='ck_qa_question_mode'),
        sa.CheckConstraint(
            "payout_status IN ('pending', 'free', 'released', 'refunded')",
            name='ck_qa_payout_status',
        ),
    )

    op.create_index('idx_qa_questions_status', 'qa_questions', ['status'])
    op.create_index('idx_qa_questions_diyer', 'qa_questions', ['diyer_user_id'])
    op.create_index('idx_qa_questions_expert', 'qa_questions', ['expert_id'])
    op.create_index(
        'idx_qa_questions_claim_expiry', 'qa_questions', ['claim_expires_at'],
        postgresql_where=sa.text("status = 'claimed'"),
    )
    op.create_index(
        'idx_qa_questions_answered', 'qa_questions', ['answered_at'],
        postgresql_where=sa.text("status = 'answered'"),
    )
    op.create_index(
        'idx_qa_questions_parent', 'qa_questions', ['parent_question_id'],
        postgresql_where=sa.text('parent_question_id IS NOT NULL'),
    )

    # ========================================================================
    # Messages and tier payments
    # ========================================================================
    op.create_table(
        'qa_messages',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('question_id', UUID(as_uuid=True), sa.ForeignKey('qa_questions.id'), nullable=False),
        sa.Column('sender_user_id', sa.String(255), nullable=False),
        sa.Column('sender_role', sa.String(10), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('was_flagged', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint("sender_role IN ('diyer', 'expert')", name='ck_qa_message_role'),
    )
    op.create_index('idx_qa_messages_question_created', 'qa_messages', ['question_id', 'created_at'])

    op.create_table(
        'qa_tier_payments',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('question_id', UUID(as_uuid=True), sa.ForeignKey('qa_questions.id'), nullable=False),
        sa.Column('tier', sa.SmallInteger(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('payment_intent_id', sa.String(255), nullable=False),
        sa.Column('charged_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('tier BETWEEN 2 AND 3', name='ck_tier_payment_tier'),
        sa.CheckConstraint('amount_cents > 0', name='ck_tier_payment_amount_positive'),
        sa.UniqueConstraint('question_id', 'tier', name='uq_tier_payment_question_tier'),
    )
    op.create_index('ix_qa_tier_payments_question_id', 'qa_tier_payments', ['question_id'])

    # ========================================================================
    # Credits
    # ========================================================================
    op.create_table(
        'user_credits',
        sa.Column('user_id', sa.String(255), primary_key=True),
        sa.Column('balance_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('balance_cents >= 0', name='ck_user_credit_non_negative'),
    )

    op.create_table(
        'credit_transactions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('reason', sa.String(100), nullable=False),
        sa.Column('qa_question_id', UUID(as_uuid=True), sa.ForeignKey('qa_questions.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('amount_cents <> 0', name='ck_credit_transaction_non_zero'),
    )
    op.create_index('ix_credit_transactions_user_id', 'credit_transactions', ['user_id'])

    # ========================================================================
    # Activity log and notifications
    # ========================================================================
    op.create_table(
        'qa_activity_log',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(255), nullable=True),
        sa.Column('question_id', UUID(as_uuid=True), sa.ForeignKey('qa_questions.id'), nullable=True),
        sa.Column('event_type', sa.String(30), nullable=False),
        sa.Column('severity', sa.String(10), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('original_content', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint("severity IN ('low', 'medium', 'high')", name='ck_activity_severity'),
    )
    op.create_index(
        'idx_qa_activity_user_type_created', 'qa_activity_log', ['user_id', 'event_type', 'created_at']
    )

    op.create_table(
        'notifications',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('notification_type', sa.String(50), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('link', sa.String(500), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('idx_notifications_user_created', 'notifications', ['user_id', 'created_at'])


def downgrade() -> None:
    """Drop all marketplace tables."""
    op.drop_table('notifications')
    op.drop_table('qa_activity_log')
    op.drop_table('credit_transactions')
    op.drop_table('user_credits')
    op.drop_table('qa_tier_payments')
    op.drop_table('qa_messages')
    op.drop_table('qa_questions')
    op.drop_table('expert_specialties')
    op.drop_table('expert_profiles')
