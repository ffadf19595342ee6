"""initial

Revision ID: 0001_init
Revises: 
Create Date: 2026-09-14

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table('user',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.Text(), nullable=True, unique=True),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('style_preferences', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )
    op.create_table('outfit_analysis',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('image_ref', sa.Text(), nullable=False),
        sa.Column('preference_hints', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(length=24), nullable=False, server_default='pending'),
        sa.Column('source', sa.String(length=24), nullable=True),
        sa.Column('result_json', sa.JSON(), nullable=True),
        sa.Column('model_meta', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('analyzed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )
    op.create_index('ix_outfit_analysis_user_id', 'outfit_analysis', ['user_id'])
    op.create_index('ix_outfit_analysis_status', 'outfit_analysis', ['status'])
    op.create_table('outfit_score',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('analysis_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('outfit_analysis.id', ondelete='CASCADE'), unique=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('overall_score', sa.Float(), nullable=False),
        sa.Column('style_score', sa.Float(), nullable=False),
        sa.Column('fit_score', sa.Float(), nullable=False),
        sa.Column('color_score', sa.Float(), nullable=False),
        sa.Column('occasion_score', sa.Float(), nullable=False),
        sa.Column('style_category', sa.Text(), nullable=True),
        sa.Column('sub_scores', sa.JSON(), nullable=True),
        sa.Column('completeness', sa.Integer(), nullable=False, server_default=sa.text('100')),
        sa.Column('confidence_flags', sa.JSON(), nullable=True),
        sa.Column('feedback', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )
    op.create_table('garment_detection',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('analysis_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('outfit_analysis.id', ondelete='CASCADE'), nullable=False),
        sa.Column('detection_id', sa.String(length=100), nullable=False),
        sa.Column('category', sa.String(length=50), nullable=False),
        sa.Column('color', sa.String(length=50), nullable=True),
        sa.Column('pattern', sa.String(length=50), nullable=True),
        sa.Column('material', sa.String(length=50), nullable=True),
        sa.Column('fit', sa.String(length=100), nullable=True),
        sa.Column('length', sa.String(length=50), nullable=True),
        sa.Column('sleeve_length', sa.String(length=50), nullable=True),
        sa.Column('neckline', sa.String(length=50), nullable=True),
        sa.Column('waistline', sa.String(length=50), nullable=True),
        sa.Column('hem_treatment', sa.String(length=50), nullable=True),
        sa.Column('layer_order', sa.Integer(), nullable=True),
        sa.Column('confidence_scores', sa.JSON(), nullable=True),
        sa.Column('all_attributes', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.UniqueConstraint('analysis_id', 'detection_id', name='uq_garment_detection_analysis_detection'),
    )
    op.create_index('ix_garment_detection_analysis_id', 'garment_detection', ['analysis_id'])
    op.create_index('ix_garment_detection_category', 'garment_detection', ['category'])
    op.create_table('outfit_assessment',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('analysis_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('outfit_analysis.id', ondelete='CASCADE'), unique=True),
        sa.Column('silhouette_shape', sa.String(length=100), nullable=True),
        sa.Column('top_length_ratio', sa.Float(), nullable=True),
        sa.Column('color_palette', sa.JSON(), nullable=True),
        sa.Column('color_scheme', sa.String(length=50), nullable=True),
        sa.Column('formality_score', sa.Integer(), nullable=True),
        sa.Column('formality_reasoning', sa.Text(), nullable=True),
        sa.Column('full_assessment', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )
    op.create_table('outfit_recommendation',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('analysis_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('outfit_analysis.id', ondelete='CASCADE'), nullable=False),
        sa.Column('recommendation_type', sa.String(length=50), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('confidence', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )
    op.create_index('ix_outfit_recommendation_analysis_id', 'outfit_recommendation', ['analysis_id'])
    op.create_table('closet_item',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('category', sa.String(length=50), nullable=False),
        sa.Column('subcategory', sa.String(length=50), nullable=True),
        sa.Column('color', sa.String(length=50), nullable=True),
        sa.Column('pattern', sa.String(length=50), nullable=True),
        sa.Column('material', sa.String(length=50), nullable=True),
        sa.Column('brand', sa.String(length=100), nullable=True),
        sa.Column('size', sa.String(length=20), nullable=True),
        sa.Column('style_tags', sa.JSON(), nullable=True),
        sa.Column('formality_level', sa.Integer(), nullable=True),
        sa.Column('season_tags', sa.JSON(), nullable=True),
        sa.Column('condition', sa.String(length=16), nullable=False, server_default='good'),
        sa.Column('source', sa.String(length=32), nullable=False, server_default='manual'),
        sa.Column('source_analysis_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('outfit_analysis.id', ondelete='SET NULL'), nullable=True),
        sa.Column('source_detection_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('garment_detection.id', ondelete='SET NULL'), nullable=True),
        sa.Column('detection_confidence', sa.Float(), nullable=True),
        sa.Column('image_refs', sa.JSON(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )
    op.create_index('ix_closet_item_user_id', 'closet_item', ['user_id'])
    op.create_index('ix_closet_item_category', 'closet_item', ['category'])
    op.create_table('closet_match_link',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('garment_detection_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('garment_detection.id', ondelete='CASCADE'), nullable=False),
        sa.Column('closet_item_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('closet_item.id', ondelete='CASCADE'), nullable=False),
        sa.Column('match_confidence', sa.Float(), nullable=False),
        sa.Column('user_confirmed', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('user_rejected', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.UniqueConstraint('garment_detection_id', 'closet_item_id', name='uq_closet_match_link_detection_item'),
    )
    op.create_index('ix_closet_match_link_closet_item_id', 'closet_match_link', ['closet_item_id'])
    op.create_index('ix_closet_match_link_active', 'closet_match_link', ['garment_detection_id', 'user_rejected', 'match_confidence'])

def downgrade() -> None:
    op.drop_index('ix_closet_match_link_active', table_name='closet_match_link')
    op.drop_index('ix_closet_match_link_closet_item_id', table_name='closet_match_link')
    op.drop_table('closet_match_link')
    op.drop_index('ix_closet_item_category', table_name='closet_item')
    op.drop_index('ix_closet_item_user_id', table_name='closet_item')
    op.drop_table('closet_item')
    op.drop_index('ix_outfit_recommendation_analysis_id', table_name='outfit_recommendation')
    op.drop_table('outfit_recommendation')
    op.drop_table('outfit_assessment')
    op.drop_index('ix_garment_detection_category', table_name='garment_detection')
    op.drop_index('ix_garment_detection_analysis_id', table_name='garment_detection')
    op.drop_table('garment_detection')
    op.drop_table('outfit_score')
    op.drop_index('ix_outfit_analysis_status', table_name='outfit_analysis')
    op.drop_index('ix_outfit_analysis_user_id', table_name='outfit_analysis')
    op.drop_table('outfit_analysis')
    op.drop_table('user')
