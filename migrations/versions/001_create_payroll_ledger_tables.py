"""Create payroll and ledger tables

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Clubs
    op.create_table(
        'clubs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('timezone', sa.String(length=64), server_default='Europe/Moscow', nullable=True),
        sa.Column('day_start_hour', sa.Integer(), server_default='8', nullable=True),
        sa.Column('night_start_hour', sa.Integer(), server_default='20', nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    # Users
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('full_name', sa.String(length=200), nullable=False),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('role', sa.String(length=20), server_default='employee', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.CheckConstraint("role IN ('owner', 'admin', 'employee')", name='check_user_role'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_users_full_name', 'users', ['full_name'])

    # Report templates
    op.create_table(
        'club_report_templates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('club_id', sa.Integer(), nullable=False),
        sa.Column('schema', postgresql.JSONB(astext_type=sa.Text()), server_default='[]', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['club_id'], ['clubs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_report_templates_club', 'club_report_templates', ['club_id', 'is_active'])

    # Salary schemes
    op.create_table(
        'salary_schemes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('club_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=True),
        sa.Column('standard_monthly_shifts', sa.Integer(), nullable=True),
        sa.Column('period_bonuses', postgresql.JSONB(astext_type=sa.Text()), server_default='[]', nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['club_id'], ['clubs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_salary_schemes_club', 'salary_schemes', ['club_id'])

    # Scheme versions (append-only)
    op.create_table(
        'salary_scheme_versions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('scheme_id', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('formula', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['scheme_id'], ['salary_schemes.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('scheme_id', 'version', name='uq_scheme_version')
    )

    # Scheme assignments
    op.create_table(
        'employee_salary_assignments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('club_id', sa.Integer(), nullable=False),
        sa.Column('scheme_id', sa.Integer(), nullable=False),
        sa.Column('assigned_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['club_id'], ['clubs.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['scheme_id'], ['salary_schemes.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'club_id', name='uq_assignment_user_club')
    )

    # Planned shifts
    op.create_table(
        'employee_shift_schedules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('club_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('planned_shifts', sa.Integer(), server_default='0', nullable=False),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name='check_schedule_month'),
        sa.ForeignKeyConstraint(['club_id'], ['clubs.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('club_id', 'user_id', 'year', 'month', name='uq_schedule_period')
    )

    # Shifts
    op.create_table(
        'shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('club_id', sa.Integer(), nullable=False),
        sa.Column('check_in', sa.DateTime(), nullable=False),
        sa.Column('check_out', sa.DateTime(), nullable=True),
        sa.Column('total_hours', sa.Numeric(precision=6, scale=2), server_default='0', nullable=True),
        sa.Column('cash_income', sa.Numeric(precision=12, scale=2), server_default='0', nullable=True),
        sa.Column('card_income', sa.Numeric(precision=12, scale=2), server_default='0', nullable=True),
        sa.Column('expenses', sa.Numeric(precision=12, scale=2), server_default='0', nullable=True),
        sa.Column('report_comment', sa.Text(), nullable=True),
        sa.Column('report_data', postgresql.JSONB(astext_type=sa.Text()), server_default='{}', nullable=True),
        sa.Column('shift_type', sa.String(length=10), server_default='DAY', nullable=True),
        sa.Column('status', sa.String(length=10), server_default='ACTIVE', nullable=False),
        sa.Column('calculated_salary', sa.Numeric(precision=12, scale=2), server_default='0', nullable=True),
        sa.Column('salary_breakdown', postgresql.JSONB(astext_type=sa.Text()), server_default='[]', nullable=True),
        sa.Column('scheme_version_id', sa.Integer(), nullable=True),
        sa.Column('salary_snapshot', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('has_owner_corrections', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('verified_by', sa.Integer(), nullable=True),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.CheckConstraint(
            "status IN ('ACTIVE', 'CLOSED', 'VERIFIED', 'PAID')", name='check_shift_status'
        ),
        sa.CheckConstraint("shift_type IN ('DAY', 'NIGHT')", name='check_shift_type'),
        sa.CheckConstraint("cash_income >= 0", name='check_cash_income'),
        sa.CheckConstraint("card_income >= 0", name='check_card_income'),
        sa.CheckConstraint("expenses >= 0", name='check_expenses'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['club_id'], ['clubs.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['scheme_version_id'], ['salary_scheme_versions.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['verified_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_shifts_user_club', 'shifts', ['user_id', 'club_id'])
    op.create_index('idx_shifts_club_check_in', 'shifts', ['club_id', 'check_in'])
    op.create_index('idx_shifts_status', 'shifts', ['status'])

    # Finance categories
    op.create_table(
        'finance_categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('club_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('type', sa.String(length=10), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.CheckConstraint("type IN ('income', 'expense')", name='check_category_type'),
        sa.ForeignKeyConstraint(['club_id'], ['clubs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_finance_categories_name', 'finance_categories', ['name', 'type'])

    # Finance transactions (ledger)
    op.create_table(
        'finance_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('club_id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('type', sa.String(length=10), nullable=False),
        sa.Column('payment_method', sa.String(length=50), nullable=True),
        sa.Column('status', sa.String(length=20), server_default='completed', nullable=False),
        sa.Column('transaction_date', sa.DateTime(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('related_shift_report_id', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.CheckConstraint("type IN ('income', 'expense')", name='check_transaction_type'),
        sa.CheckConstraint("amount > 0", name='check_positive_amount'),
        sa.ForeignKeyConstraint(['club_id'], ['clubs.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['category_id'], ['finance_categories.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('related_shift_report_id', 'payment_method', name='uq_finance_tx_shift_channel')
    )
    op.create_index('idx_finance_tx_club_date', 'finance_transactions', ['club_id', 'transaction_date'])
    op.create_index('idx_finance_tx_shift', 'finance_transactions', ['related_shift_report_id'])

    # Audit log
    op.create_table(
        'audit_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('entity_type', sa.String(length=50), nullable=True),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('old_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('new_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_audit_log_entity', 'audit_log', ['entity_type', 'entity_id'])
    op.create_index('idx_audit_log_action', 'audit_log', ['action'])
    op.create_index('ix_audit_log_created_at', 'audit_log', ['created_at'])

    # Общая категория выручки
    op.execute(
        "INSERT INTO finance_categories (club_id, name, type, is_active) "
        "VALUES (NULL, 'Выручка клуба', 'income', true)"
    )


def downgrade() -> None:
    op.drop_table('audit_log')
    op.drop_table('finance_transactions')
    op.drop_table('finance_categories')
    op.drop_table('shifts')
    op.drop_table('employee_shift_schedules')
    op.drop_table('employee_salary_assignments')
    op.drop_table('salary_scheme_versions')
    op.drop_table('salary_schemes')
    op.drop_table('club_report_templates')
    op.drop_table('users')
    op.drop_table('clubs')
