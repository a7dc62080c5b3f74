"""create_order_payment_tables

Revision ID: 4c1e2a7b9d31
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4c1e2a7b9d31'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 商品目录（只读映射，由目录服务维护）
    op.create_table(
        'products',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price', sa.Numeric(precision=15, scale=2), nullable=False, comment='当前售价（店铺币种）'),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_sold_out', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=36), nullable=False, comment='订单ID (UUID)'),
        sa.Column('order_number', sa.String(length=64), nullable=False, comment='对外展示的订单号'),
        sa.Column('user_id', sa.String(length=64), nullable=False, comment='下单用户ID'),
        sa.Column('subtotal', sa.Numeric(precision=15, scale=2), nullable=False, comment='明细合计'),
        sa.Column('total', sa.Numeric(precision=15, scale=2), nullable=False, comment='应付金额'),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='货币代码 ISO-4217'),
        sa.Column('status', sa.String(length=32), nullable=False, comment='订单状态'),
        sa.Column('payment_status', sa.String(length=32), nullable=False, comment='支付状态'),
        sa.Column('payment_method', sa.String(length=32), nullable=False, comment='支付方式: bank_transfer/stripe/paypal'),
        sa.Column('gateway_provider', sa.String(length=32), nullable=True, comment='网关: stripe/paypal'),
        sa.Column('gateway_reference', sa.String(length=255), nullable=True, comment='网关会话/订单ID'),
        sa.Column('gateway_data', sa.JSON(), nullable=True, comment='网关快照与历史会话'),
        sa.Column('payment_last_error', sa.Text(), nullable=True, comment='最近一次支付失败原因'),
        sa.Column('customer_name', sa.String(length=200), nullable=True),
        sa.Column('customer_email', sa.String(length=200), nullable=True),
        sa.Column('customer_phone', sa.String(length=50), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0', comment='乐观并发版本号'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True, comment='支付完成时间'),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True, comment='取消时间'),
        sa.Column('fulfilled_at', sa.DateTime(timezone=True), nullable=True, comment='履约时间'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('gateway_provider', 'gateway_reference', name='uq_orders_gateway_reference'),
        comment='订单表：金额快照、订单/支付双轴状态与当前网关会话',
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_user_id', 'orders', ['user_id'], unique=False)
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'], unique=False)
    op.create_index('ix_orders_created_at', 'orders', ['created_at'], unique=False)
    op.create_index('ix_orders_user_created', 'orders', ['user_id', 'created_at'], unique=False)
    # 过期会话扫描：payment_status=processing 且 updated_at 早于截止时间
    op.create_index('ix_orders_payment_sweep', 'orders', ['payment_status', 'updated_at'], unique=False)

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False, comment='商品ID'),
        sa.Column('name', sa.String(length=255), nullable=False, comment='下单时商品名'),
        sa.Column('unit_price', sa.Numeric(precision=15, scale=2), nullable=False, comment='下单时单价'),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'], unique=False)

    op.create_table(
        'payment_proofs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('proof_url', sa.String(length=1024), nullable=False, comment='凭证文件地址'),
        sa.Column('content_type', sa.String(length=100), nullable=True),
        sa.Column('size_bytes', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='提交时订单金额快照'),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='pending/approved/rejected'),
        sa.Column('submitter_name', sa.String(length=200), nullable=True),
        sa.Column('submitter_email', sa.String(length=200), nullable=True),
        sa.Column('submitter_phone', sa.String(length=50), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True, comment='审核备注/拒绝原因'),
        sa.Column('reviewed_by', sa.String(length=64), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        comment='人工转账凭证，每条只能审核一次',
    )
    op.create_index('ix_payment_proofs_order_id', 'payment_proofs', ['order_id'], unique=False)
    op.create_index('ix_payment_proofs_user_id', 'payment_proofs', ['user_id'], unique=False)
    op.create_index('ix_payment_proofs_status', 'payment_proofs', ['status'], unique=False)
    op.create_index('ix_payment_proofs_created_at', 'payment_proofs', ['created_at'], unique=False)
    op.create_index('ix_payment_proofs_order_status', 'payment_proofs', ['order_id', 'status'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_payment_proofs_order_status', table_name='payment_proofs')
    op.drop_index('ix_payment_proofs_created_at', table_name='payment_proofs')
    op.drop_index('ix_payment_proofs_status', table_name='payment_proofs')
    op.drop_index('ix_payment_proofs_user_id', table_name='payment_proofs')
    op.drop_index('ix_payment_proofs_order_id', table_name='payment_proofs')
    op.drop_table('payment_proofs')

    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')

    op.drop_index('ix_orders_payment_sweep', table_name='orders')
    op.drop_index('ix_orders_user_created', table_name='orders')
    op.drop_index('ix_orders_created_at', table_name='orders')
    op.drop_index('ix_orders_payment_status', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_index('ix_orders_order_number', table_name='orders')
    op.drop_table('orders')

    op.drop_table('products')
