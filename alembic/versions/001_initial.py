"""Initial migration

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Manufacturers table
    op.create_table(
        'manufacturers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=256), nullable=False),
        sa.Column('website_url', sa.Text(), nullable=True),
        sa.Column('scraper_config', postgresql.JSONB(), nullable=True),
        sa.Column('default_pillar', sa.String(length=64), nullable=True),
        sa.Column('last_scraped_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # Products table
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('manufacturer_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('pillar', sa.String(length=64), nullable=False),
        sa.Column('product_code', sa.String(length=128), nullable=False),
        sa.Column('product_name', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('specifications', postgresql.JSONB(), nullable=False),
        sa.Column('scraped_data', postgresql.JSONB(), nullable=True),
        sa.Column('normalized_at', sa.DateTime(), nullable=True),
        sa.Column('normalization_confidence', sa.Float(), nullable=True),
        sa.Column('normalization_warnings', postgresql.JSONB(), nullable=True),
        sa.Column('needs_review', sa.Boolean(), nullable=False),
        sa.Column('embedding', postgresql.ARRAY(sa.Float()), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['manufacturer_id'], ['manufacturers.id']),
        sa.UniqueConstraint('manufacturer_id', 'product_code', name='uq_product_manufacturer_code')
    )

    # Product files table
    op.create_table(
        'product_files',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('file_url', sa.Text(), nullable=True),
        sa.Column('file_name', sa.Text(), nullable=False),
        sa.Column('file_type', sa.String(length=64), nullable=False),
        sa.Column('mime_type', sa.String(length=128), nullable=True),
        sa.Column('parsed_data', postgresql.JSONB(), nullable=True),
        sa.Column('file_path', sa.Text(), nullable=True),
        sa.Column('uploaded_by', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE')
    )

    # Pillar schemas table
    op.create_table(
        'pillar_schemas',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('pillar', sa.String(length=64), nullable=False),
        sa.Column('display_name', sa.String(length=128), nullable=False),
        sa.Column('field_definitions', postgresql.JSONB(), nullable=False),
        sa.Column('required_fields', postgresql.JSONB(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pillar')
    )

    # Scrape jobs table
    op.create_table(
        'scrape_jobs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('manufacturer_id', sa.Integer(), nullable=False),
        sa.Column('scrape_type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('progress', postgresql.JSONB(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('error_log', sa.Text(), nullable=True),
        sa.Column('products_created', sa.Integer(), nullable=False),
        sa.Column('products_updated', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['manufacturer_id'], ['manufacturers.id'])
    )

    # Knowledge documents table
    op.create_table(
        'knowledge_documents',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('source_file', sa.Text(), nullable=False),
        sa.Column('generation', sa.Integer(), nullable=False),
        sa.Column('pillar', sa.String(length=64), nullable=True),
        sa.Column('page_count', sa.Integer(), nullable=False),
        sa.Column('chunk_count', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'organization_id', 'source_file', 'generation', name='uq_knowledge_document_generation'
        )
    )

    # Knowledge chunks table
    op.create_table(
        'knowledge_chunks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_id', sa.Integer(), nullable=False),
        sa.Column('chunk_index', sa.Integer(), nullable=False),
        sa.Column('chunk_type', sa.String(length=32), nullable=False),
        sa.Column('page_number', sa.Integer(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('metadata_json', postgresql.JSONB(), nullable=False),
        sa.Column('embedding', postgresql.ARRAY(sa.Float()), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['document_id'], ['knowledge_documents.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('document_id', 'chunk_index', name='uq_knowledge_chunk_index')
    )

    # Create indexes
    op.create_index('ix_manufacturers_organization_id', 'manufacturers', ['organization_id'])
    op.create_index('ix_products_manufacturer_id', 'products', ['manufacturer_id'])
    op.create_index('ix_products_organization_id', 'products', ['organization_id'])
    op.create_index('ix_products_normalized_at', 'products', ['normalized_at'])
    op.create_index('ix_product_files_product_id', 'product_files', ['product_id'])
    op.create_index('ix_scrape_jobs_manufacturer_id', 'scrape_jobs', ['manufacturer_id'])
    op.create_index('ix_knowledge_documents_organization_id', 'knowledge_documents', ['organization_id'])
    op.create_index('ix_knowledge_chunks_document_id', 'knowledge_chunks', ['document_id'])


def downgrade() -> None:
    # Drop indexes
    op.drop_index('ix_knowledge_chunks_document_id', table_name='knowledge_chunks')
    op.drop_index('ix_knowledge_documents_organization_id', table_name='knowledge_documents')
    op.drop_index('ix_scrape_jobs_manufacturer_id', table_name='scrape_jobs')
    op.drop_index('ix_product_files_product_id', table_name='product_files')
    op.drop_index('ix_products_normalized_at', table_name='products')
    op.drop_index('ix_products_organization_id', table_name='products')
    op.drop_index('ix_products_manufacturer_id', table_name='products')
    op.drop_index('ix_manufacturers_organization_id', table_name='manufacturers')

    # Drop tables
    op.drop_table('knowledge_chunks')
    op.drop_table('knowledge_documents')
    op.drop_table('scrape_jobs')
    op.drop_table('pillar_schemas')
    op.drop_table('product_files')
    op.drop_table('products')
    op.drop_table('manufacturers')
