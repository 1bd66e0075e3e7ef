"""Record the pricing mode per question and cap live second opinions.

pricing_mode lets a pool reset re-split the price at the fee rate the
question was listed under. The partial unique index allows one second
opinion per parent that is not cancelled, so a declined child does not
block a retry.

Revision ID: 2026_10_18_0002
Revises: 2026_10_18_0001
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_18_0002"
down_revision: str | None = "2026_10_18_0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Add qa_questions.pricing_mode and the second opinion unique index."""
    op.add_column(
        "qa_questions",
        sa.Column("pricing_mode", sa.String(10), nullable=False, server_default="dynamic"),
    )
    op.create_check_constraint(
        "ck_qa_pricing_mode",
        "qa_questions",
        "pricing_mode IN ('flat', 'dynamic')",
    )
    op.create_index(
        "uq_qa_questions_open_second_opinion",
        "qa_questions",
        ["parent_question_id"],
        unique=True,
        postgresql_where=sa.text("parent_question_id IS NOT NULL AND status <> 'cancelled'"),
    )


def downgrade() -> None:
    """Drop the index and the column."""
    op.drop_index("uq_qa_questions_open_second_opinion", table_name="qa_questions")
    op.drop_constraint("ck_qa_pricing_mode", "qa_questions", type_="check")
    op.drop_column("qa_questions", "pricing_mode")
