"""initial repair tracker schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('customers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=False),
        sa.Column('company', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_customers_phone', 'customers', ['phone'])

    op.create_table('repairs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('repair_id', sa.String(length=16), nullable=False),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('customers.id', ondelete='SET NULL'), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='Received'),
        sa.Column('patient_name', sa.String(length=128), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=False),
        sa.Column('company', sa.String(length=64), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('notification_preference', sa.String(length=16), nullable=False, server_default='none'),
        sa.Column('model_item_name', sa.String(length=128), nullable=False),
        sa.Column('serial_no', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('warranty', sa.String(length=32), nullable=False),
        sa.Column('ear', sa.String(length=8), nullable=True),
        sa.Column('mould', sa.String(length=64), nullable=True),
        sa.Column('purpose', sa.Text(), nullable=False),
        sa.Column('date_of_receipt', sa.DateTime(timezone=True), nullable=False),
        sa.Column('date_out_to_manufacturer', sa.DateTime(timezone=True), nullable=True),
        sa.Column('date_received_from_manufacturer', sa.DateTime(timezone=True), nullable=True),
        sa.Column('date_out_to_customer', sa.DateTime(timezone=True), nullable=True),
        sa.Column('repair_estimate', sa.Numeric(12, 2), nullable=True),
        sa.Column('estimate_status', sa.String(length=16), nullable=False, server_default='Not Required'),
        sa.Column('estimate_approval_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('customer_paid', sa.Numeric(12, 2), nullable=True),
        sa.Column('payment_mode', sa.String(length=32), nullable=True),
        sa.Column('programming_done', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('remarks', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
    )
    op.create_index('ix_repairs_repair_id', 'repairs', ['repair_id'], unique=True)
    op.create_index('ix_repairs_customer_id', 'repairs', ['customer_id'])
    op.create_index('ix_repairs_status', 'repairs', ['status'])
    op.create_index('ix_repairs_phone', 'repairs', ['phone'])
    op.create_index('ix_repairs_estimate_status', 'repairs', ['estimate_status'])
    op.create_index('ix_repairs_created_at', 'repairs', ['created_at'])

    op.create_table('status_change_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('repair_pk', sa.Integer(), sa.ForeignKey('repairs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('repair_id', sa.String(length=16), nullable=False),
        sa.Column('old_status', sa.String(length=32), nullable=True),
        sa.Column('new_status', sa.String(length=32), nullable=False),
        sa.Column('actor', sa.String(length=64), nullable=False),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('notification_sent', sa.Boolean(), nullable=False, server_default=sa.text('0')),
    )
    op.create_index('ix_status_change_logs_repair_pk', 'status_change_logs', ['repair_pk'])
    op.create_index('ix_status_change_logs_repair_id', 'status_change_logs', ['repair_id'])

    op.create_table('staff_users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=128), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='staff'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_staff_users_email', 'staff_users', ['email'], unique=True)

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity', sa.String(length=64), nullable=True),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_audit_logs_actor_user_id', 'audit_logs', ['actor_user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('staff_users')
    op.drop_table('status_change_logs')
    op.drop_table('repairs')
    op.drop_table('customers')
