"""Initial migration - create local billing tables and reconciliation tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Local billing records
    op.create_table(
        'stripe_customers',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('customer_id', sa.String(255), nullable=False, unique=True),
        sa.Column('email', sa.String(320), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_stripe_customers_created_at', 'stripe_customers', ['created_at'])
    op.create_index('ix_stripe_customers_user_id', 'stripe_customers', ['user_id'])

    op.create_table(
        'stripe_subscriptions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('customer_id', sa.String(255), nullable=False),
        sa.Column('subscription_id', sa.String(255), nullable=False, unique=True),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('plan_id', sa.String(255), nullable=True),
        sa.Column('current_period_start', sa.DateTime(), nullable=True),
        sa.Column('current_period_end', sa.DateTime(), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_stripe_subscriptions_created_at', 'stripe_subscriptions', ['created_at'])
    op.create_index('ix_stripe_subscriptions_user_id', 'stripe_subscriptions', ['user_id'])

    op.create_table(
        'stripe_invoices',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('customer_id', sa.String(255), nullable=False),
        sa.Column('invoice_id', sa.String(255), nullable=False, unique=True),
        sa.Column('subscription_id', sa.String(255), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='usd'),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('invoice_url', sa.Text(), nullable=True),
        sa.Column('invoice_pdf', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_stripe_invoices_created_at', 'stripe_invoices', ['created_at'])
    op.create_index('ix_stripe_invoices_user_id', 'stripe_invoices', ['user_id'])

    # Reconciliation reports
    op.create_table(
        'reconciliation_reports',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('report_date', sa.DateTime(), nullable=False),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('total_records', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('matched_records', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('mismatched_records', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('missing_records', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('subscription_diffs', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('invoice_diffs', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('customer_diffs', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_reconciliation_reports_status', 'reconciliation_reports', ['status'])
    op.create_index('ix_reconciliation_reports_report_date', 'reconciliation_reports', ['report_date'])

    # Reconciliation diffs
    op.create_table(
        'reconciliation_diffs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('report_id', sa.String(36), sa.ForeignKey('reconciliation_reports.id'), nullable=False),
        sa.Column('record_type', sa.String(20), nullable=False),
        sa.Column('record_id', sa.String(255), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=True),
        sa.Column('diff_type', sa.String(20), nullable=False),
        sa.Column('field_name', sa.String(50), nullable=False),
        sa.Column('local_value', sa.Text(), nullable=True),
        sa.Column('remote_value', sa.Text(), nullable=True),
        sa.Column('severity', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('auto_fixed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('fixed_at', sa.DateTime(), nullable=True),
        sa.Column('fixed_by', sa.String(50), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_reconciliation_diffs_report_id', 'reconciliation_diffs', ['report_id'])
    op.create_index('ix_reconciliation_diffs_status', 'reconciliation_diffs', ['status'])
    op.create_index('ix_reconciliation_diffs_severity', 'reconciliation_diffs', ['severity'])
    op.create_index('ix_reconciliation_diffs_record_type', 'reconciliation_diffs', ['record_type'])
    op.create_index('ix_reconciliation_diffs_created_at', 'reconciliation_diffs', ['created_at'])

    # Audit trail
    op.create_table(
        'reconciliation_audit_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('report_id', sa.String(36), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('record_type', sa.String(20), nullable=True),
        sa.Column('record_id', sa.String(255), nullable=True),
        sa.Column('user_id', sa.String(255), nullable=True),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('performed_by', sa.String(50), nullable=False, server_default='system'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_reconciliation_audit_logs_report_id', 'reconciliation_audit_logs', ['report_id'])
    op.create_index('ix_reconciliation_audit_logs_action', 'reconciliation_audit_logs', ['action'])
    op.create_index('ix_reconciliation_audit_logs_created_at', 'reconciliation_audit_logs', ['created_at'])

    # Singleton configuration row
    op.create_table(
        'reconciliation_config',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('schedule', sa.String(100), nullable=False, server_default='0 2 * * *'),
        sa.Column('auto_fix_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('auto_fix_severity', sa.String(20), nullable=False, server_default='medium'),
        sa.Column('notification_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notification_email', sa.String(320), nullable=True),
        sa.Column('retention_days', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('reconciliation_config')

    op.drop_index('ix_reconciliation_audit_logs_created_at', table_name='reconciliation_audit_logs')
    op.drop_index('ix_reconciliation_audit_logs_action', table_name='reconciliation_audit_logs')
    op.drop_index('ix_reconciliation_audit_logs_report_id', table_name='reconciliation_audit_logs')
    op.drop_table('reconciliation_audit_logs')

    op.drop_index('ix_reconciliation_diffs_created_at', table_name='reconciliation_diffs')
    op.drop_index('ix_reconciliation_diffs_record_type', table_name='reconciliation_diffs')
    op.drop_index('ix_reconciliation_diffs_severity', table_name='reconciliation_diffs')
    op.drop_index('ix_reconciliation_diffs_status', table_name='reconciliation_diffs')
    op.drop_index('ix_reconciliation_diffs_report_id', table_name='reconciliation_diffs')
    op.drop_table('reconciliation_diffs')

    op.drop_index('ix_reconciliation_reports_report_date', table_name='reconciliation_reports')
    op.drop_index('ix_reconciliation_reports_status', table_name='reconciliation_reports')
    op.drop_table('reconciliation_reports')

    op.drop_index('ix_stripe_invoices_user_id', table_name='stripe_invoices')
    op.drop_index('ix_stripe_invoices_created_at', table_name='stripe_invoices')
    op.drop_table('stripe_invoices')

    op.drop_index('ix_stripe_subscriptions_user_id', table_name='stripe_subscriptions')
    op.drop_index('ix_stripe_subscriptions_created_at', table_name='stripe_subscriptions')
    op.drop_table('stripe_subscriptions')

    op.drop_index('ix_stripe_customers_user_id', table_name='stripe_customers')
    op.drop_index('ix_stripe_customers_created_at', table_name='stripe_customers')
    op.drop_table('stripe_customers')
