"""Create catalog and orders tables

Revision ID: create_storefront_tables
Revises:
Create Date: 2026-10-17 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'create_storefront_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLite 只对 INTEGER PRIMARY KEY 自增
BigIntPK = sa.BigInteger().with_variant(sa.Integer(), 'sqlite')


def upgrade() -> None:
    """Create categories, products, product_size_stocks, campaigns and orders"""

    op.create_table('categories',
        sa.Column('id', BigIntPK, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False, comment='分类名称'),
        sa.Column('slug', sa.String(length=255), nullable=False, comment='URL 标识'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true(), comment='是否启用'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug')
    )

    op.create_table('products',
        sa.Column('id', BigIntPK, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False, comment='商品名称'),
        sa.Column('description', sa.Text(), nullable=True, comment='商品描述'),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False, comment='标价'),
        sa.Column('image', sa.String(length=500), nullable=True, comment='图片存储路径'),
        sa.Column('media_url', sa.String(length=500), nullable=True, comment='媒体库图片地址'),
        sa.Column('color', sa.String(length=50), nullable=True, comment='颜色'),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default='0', comment='总库存（无尺码库存时使用）'),
        sa.Column('category_id', sa.BigInteger(), nullable=True, comment='分类ID'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, comment='更新时间'),
        sa.CheckConstraint('price >= 0'),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_products_stock_quantity'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_products_category', 'products', ['category_id'], unique=False)

    op.create_table('product_size_stocks',
        sa.Column('id', BigIntPK, nullable=False),
        sa.Column('product_id', sa.BigInteger(), nullable=False, comment='商品ID'),
        sa.Column('size', sa.String(length=50), nullable=False, comment='尺码'),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0', comment='可售数量'),
        sa.CheckConstraint('quantity >= 0', name='ck_size_stocks_quantity'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'size', name='uq_size_stocks_product_size')
    )

    op.create_table('campaigns',
        sa.Column('id', BigIntPK, nullable=False),
        sa.Column('title', sa.String(length=255), nullable=True, comment='活动标题'),
        sa.Column('product_id', sa.BigInteger(), nullable=False, comment='商品ID'),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False, comment='活动价'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_campaigns_product_active', 'campaigns', ['product_id', 'is_active'], unique=False)

    op.create_table('orders',
        sa.Column('id', BigIntPK, nullable=False),
        sa.Column('unique_id', sa.String(length=16), nullable=False, comment='对外订单号'),
        sa.Column('batch_id', sa.String(length=64), nullable=True, comment='结账批次ID'),
        sa.Column('customer_full_name', sa.String(length=255), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=False),
        sa.Column('customer_phone', sa.String(length=20), nullable=False),
        sa.Column('customer_address', sa.String(length=1000), nullable=False),
        sa.Column('customer_city', sa.String(length=100), nullable=False),
        sa.Column('customer_country', sa.String(length=20), nullable=False),
        sa.Column('product_id', sa.BigInteger(), nullable=True, comment='商品ID'),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('product_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('product_image', sa.String(length=500), nullable=True),
        sa.Column('product_size', sa.String(length=50), nullable=True),
        sa.Column('product_color', sa.String(length=50), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('total_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('payment_method', sa.String(length=20), nullable=False, server_default='cash'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("customer_country IN ('albania','kosovo','macedonia')", name='ck_orders_country'),
        sa.CheckConstraint('quantity BETWEEN 1 AND 100', name='ck_orders_quantity'),
        sa.CheckConstraint(
            "status IN ('pending','confirmed','processing','shipped','delivered','cancelled')",
            name='ck_orders_status'
        ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('unique_id', name='uq_orders_unique_id')
    )
    op.create_index('ix_orders_customer_created', 'orders', ['customer_email', 'created_at'], unique=False)
    op.create_index('ix_orders_batch', 'orders', ['batch_id'], unique=False)
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)
    op.create_index('ix_orders_created_at', 'orders', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_orders_created_at', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_batch', table_name='orders')
    op.drop_index('ix_orders_customer_created', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_campaigns_product_active', table_name='campaigns')
    op.drop_table('campaigns')
    op.drop_table('product_size_stocks')
    op.drop_index('ix_products_category', table_name='products')
    op.drop_table('products')
    op.drop_table('categories')
