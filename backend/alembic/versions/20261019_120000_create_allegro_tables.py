"""create allegro offer, product, token and sync job tables

Revision ID: allegro_core_001
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

revision = 'allegro_core_001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if 'products' not in existing_tables:
        op.create_table(
            'products',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('code', sa.String(100)),
            sa.Column('name', sa.String(255)),
            sa.Column('ean', sa.String(20)),
            sa.Column('stock_quantity', sa.Integer(), server_default='0'),
            sa.Column('catalog_product_id', sa.String(100), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index('ix_products_code', 'products', ['code'])
        op.create_index('ix_products_ean', 'products', ['ean'])

    if 'allegro_offers' not in existing_tables:
        op.create_table(
            'allegro_offers',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('allegro_offer_id', sa.String(100), nullable=False),
            sa.Column('product_id', sa.String(36), sa.ForeignKey('products.id', ondelete='SET NULL'), nullable=True),
            sa.Column('title', sa.String(255)),
            sa.Column('description', sa.Text()),
            sa.Column('category_id', sa.String(100)),
            sa.Column('price', sa.Numeric(12, 2)),
            sa.Column('currency', sa.String(10)),
            sa.Column('stock_quantity', sa.Integer()),
            sa.Column('status', sa.String(50)),
            sa.Column('publication_status', sa.String(50)),
            sa.Column('images', sa.JSON()),
            sa.Column('delivery_options', sa.JSON()),
            sa.Column('payment_options', sa.JSON()),
            sa.Column('raw_data', sa.JSON()),
            sa.Column('validation_status', sa.String(20)),
            sa.Column('validation_errors', sa.JSON()),
            sa.Column('last_validated_at', sa.DateTime(timezone=True)),
            sa.Column('sync_status', sa.String(20)),
            sa.Column('sync_source', sa.String(20)),
            sa.Column('sync_error', sa.Text()),
            sa.Column('last_synced_at', sa.DateTime(timezone=True)),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index('ix_allegro_offers_allegro_offer_id', 'allegro_offers', ['allegro_offer_id'], unique=True)
        op.create_index('ix_allegro_offers_product_id', 'allegro_offers', ['product_id'])
        op.create_index('ix_allegro_offers_status', 'allegro_offers', ['status'])
        op.create_index('ix_allegro_offers_publication_status', 'allegro_offers', ['publication_status'])
        op.create_index('ix_allegro_offers_validation_status', 'allegro_offers', ['validation_status'])
        op.create_index('ix_allegro_offers_sync_status', 'allegro_offers', ['sync_status'])

    if 'allegro_user_tokens' not in existing_tables:
        op.create_table(
            'allegro_user_tokens',
            sa.Column('user_id', sa.String(100), primary_key=True),
            sa.Column('access_token', sa.Text()),
            sa.Column('refresh_token', sa.Text()),
            sa.Column('expires_at', sa.DateTime(timezone=True)),
            sa.Column('scopes', sa.Text()),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )

    if 'sync_jobs' not in existing_tables:
        op.create_table(
            'sync_jobs',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('user_id', sa.String(100), nullable=False),
            sa.Column('job_type', sa.String(50), nullable=False),
            sa.Column('job_status', sa.String(50), nullable=False),
            sa.Column('sync_source', sa.String(20)),
            sa.Column('started_at', sa.DateTime(timezone=True)),
            sa.Column('completed_at', sa.DateTime(timezone=True)),
            sa.Column('records_synced', sa.Integer(), server_default='0'),
            sa.Column('records_failed', sa.Integer(), server_default='0'),
            sa.Column('error_message', sa.Text()),
            sa.Column('sync_params', sa.Text()),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index('ix_sync_jobs_user_id', 'sync_jobs', ['user_id'])
        op.create_index('ix_sync_jobs_job_status', 'sync_jobs', ['job_status'])
        op.create_index('ix_sync_jobs_created_at', 'sync_jobs', ['created_at'])


def downgrade():
    op.drop_table('sync_jobs')
    op.drop_table('allegro_user_tokens')
    op.drop_table('allegro_offers')
    op.drop_table('products')
