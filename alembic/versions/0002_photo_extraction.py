"""photo extraction

Revision ID: 0002_photo_extraction
Revises: 0001_init
Create Date: 2026-09-28 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0002_photo_extraction"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "photo_extraction",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("image_ref", sa.Text(), nullable=False),
        sa.Column("extraction_type", sa.String(length=32), nullable=False, server_default="outfit"),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="pending"),
        sa.Column("extracted_items_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("approved_items_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("processing_metadata", sa.JSON(), nullable=True),
        sa.Column("confidence_flags", sa.JSON(), nullable=True),
        sa.Column("user_reviewed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    )
    op.create_index("ix_photo_extraction_user_id", "photo_extraction", ["user_id"])
    op.create_table(
        "extracted_item",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("extraction_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("photo_extraction.id", ondelete="CASCADE"), nullable=False),
        sa.Column("item_id", sa.String(length=100), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("bounding_box", sa.JSON(), nullable=False),
        sa.Column("box_scale", sa.String(length=16), nullable=False, server_default="percent"),
        sa.Column("attributes", sa.JSON(), nullable=True),
        sa.Column("confidence_scores", sa.JSON(), nullable=True),
        sa.Column("closet_suitability", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("user_approved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("user_rejected", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_closet_item_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("closet_item.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.UniqueConstraint("extraction_id", "item_id", name="uq_extracted_item_extraction_item"),
    )
    op.create_index("ix_extracted_item_extraction_id", "extracted_item", ["extraction_id"])
    op.add_column(
        "closet_item",
        sa.Column("source_extraction_id", postgresql.UUID(as_uuid=True), nullable=True),
    )
    op.create_foreign_key(
        "fk_closet_item_source_extraction",
        "closet_item",
        "photo_extraction",
        ["source_extraction_id"],
        ["id"],
        ondelete="SET NULL",
    )


def downgrade() -> None:
    op.drop_constraint("fk_closet_item_source_extraction", "closet_item", type_="foreignkey")
    op.drop_column("closet_item", "source_extraction_id")
    op.drop_index("ix_extracted_item_extraction_id", table_name="extracted_item")
    op.drop_table("extracted_item")
    op.drop_index("ix_photo_extraction_user_id", table_name="photo_extraction")
    op.drop_table("photo_extraction")
