"""extraction review edits

Revision ID: 0003_extraction_review
Revises: 0002_photo_extraction
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0003_extraction_review"
down_revision = "0002_photo_extraction"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("extracted_item", sa.Column("user_edited_attributes", sa.JSON(), nullable=True))
    op.add_column("extracted_item", sa.Column("user_feedback", sa.Text(), nullable=True))
    op.add_column("closet_item", sa.Column("extraction_metadata", sa.JSON(), nullable=True))


def downgrade() -> None:
    op.drop_column("closet_item", "extraction_metadata")
    op.drop_column("extracted_item", "user_feedback")
    op.drop_column("extracted_item", "user_edited_attributes")
