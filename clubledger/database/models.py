"""
SQLAlchemy модели базы данных
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Boolean,
    Text, ForeignKey, CheckConstraint, Index, UniqueConstraint, JSON, func
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# JSONB в PostgreSQL, обычный JSON в остальных диалектах
JSONType = JSON().with_variant(JSONB(), 'postgresql')


SHIFT_STATUSES = ('ACTIVE', 'CLOSED', 'VERIFIED', 'PAID')


class Club(Base):
    """Клубы"""
    __tablename__ = 'clubs'

    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False)
    timezone = Column(String(64), default='Europe/Moscow')
    day_start_hour = Column(Integer, default=8)
    night_start_hour = Column(Integer, default=20)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())


class User(Base):
    """Сотрудники и владельцы"""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    full_name = Column(String(200), nullable=False)
    phone = Column(String(20))
    role = Column(String(20), default='employee', nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        CheckConstraint("role IN ('owner', 'admin', 'employee')", name='check_user_role'),
        Index('idx_users_full_name', 'full_name'),
    )


class ReportTemplate(Base):
    """Шаблон отчета смены: какие поля заполняются и как классифицируются"""
    __tablename__ = 'club_report_templates'

    id = Column(Integer, primary_key=True)
    club_id = Column(Integer, ForeignKey('clubs.id', ondelete='CASCADE'), nullable=False)
    schema = Column(JSONType, nullable=False, default=list)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        Index('idx_report_templates_club', 'club_id', 'is_active'),
    )


class SalaryScheme(Base):
    """Схемы оплаты клуба"""
    __tablename__ = 'salary_schemes'

    id = Column(Integer, primary_key=True)
    club_id = Column(Integer, ForeignKey('clubs.id', ondelete='CASCADE'), nullable=False)
    name = Column(String(120), nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, default=True)
    standard_monthly_shifts = Column(Integer)
    period_bonuses = Column(JSONType, default=list)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        Index('idx_salary_schemes_club', 'club_id'),
    )

    versions = relationship(
        'SalarySchemeVersion', back_populates='scheme', order_by='SalarySchemeVersion.version'
    )


class SalarySchemeVersion(Base):
    """Неизменяемые версии формулы схемы"""
    __tablename__ = 'salary_scheme_versions'

    id = Column(Integer, primary_key=True)
    scheme_id = Column(Integer, ForeignKey('salary_schemes.id', ondelete='CASCADE'), nullable=False)
    version = Column(Integer, nullable=False)
    formula = Column(JSONType, nullable=False)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint('scheme_id', 'version', name='uq_scheme_version'),
    )

    scheme = relationship('SalaryScheme', back_populates='versions')


class EmployeeSalaryAssignment(Base):
    """Назначенная сотруднику схема в клубе (одна активная)"""
    __tablename__ = 'employee_salary_assignments'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    club_id = Column(Integer, ForeignKey('clubs.id', ondelete='CASCADE'), nullable=False)
    scheme_id = Column(Integer, ForeignKey('salary_schemes.id', ondelete='CASCADE'), nullable=False)
    assigned_at = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint('user_id', 'club_id', name='uq_assignment_user_club'),
    )


class EmployeeShiftSchedule(Base):
    """Плановое количество смен сотрудника на месяц"""
    __tablename__ = 'employee_shift_schedules'

    id = Column(Integer, primary_key=True)
    club_id = Column(Integer, ForeignKey('clubs.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    planned_shifts = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("month BETWEEN 1 AND 12", name='check_schedule_month'),
        UniqueConstraint('club_id', 'user_id', 'year', 'month', name='uq_schedule_period'),
    )


class Shift(Base):
    """Смены сотрудников"""
    __tablename__ = 'shifts'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'))
    club_id = Column(Integer, ForeignKey('clubs.id', ondelete='CASCADE'), nullable=False)
    check_in = Column(DateTime, nullable=False)
    check_out = Column(DateTime)
    total_hours = Column(Numeric(6, 2), default=0)
    cash_income = Column(Numeric(12, 2), default=0)
    card_income = Column(Numeric(12, 2), default=0)
    expenses = Column(Numeric(12, 2), default=0)
    report_comment = Column(Text)
    report_data = Column(JSONType, default=dict)
    shift_type = Column(String(10), default='DAY')
    status = Column(String(10), default='ACTIVE', nullable=False)
    calculated_salary = Column(Numeric(12, 2), default=0)
    salary_breakdown = Column(JSONType, default=list)
    scheme_version_id = Column(Integer, ForeignKey('salary_scheme_versions.id', ondelete='SET NULL'))
    salary_snapshot = Column(JSONType)
    has_owner_corrections = Column(Boolean, default=False, nullable=False)
    verified_by = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'))
    verified_at = Column(DateTime)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        CheckConstraint(
            "status IN ('ACTIVE', 'CLOSED', 'VERIFIED', 'PAID')",
            name='check_shift_status'
        ),
        CheckConstraint("shift_type IN ('DAY', 'NIGHT')", name='check_shift_type'),
        CheckConstraint("cash_income >= 0", name='check_cash_income'),
        CheckConstraint("card_income >= 0", name='check_card_income'),
        CheckConstraint("expenses >= 0", name='check_expenses'),
        Index('idx_shifts_user_club', 'user_id', 'club_id'),
        Index('idx_shifts_club_check_in', 'club_id', 'check_in'),
        Index('idx_shifts_status', 'status'),
    )

    @property
    def is_finished(self):
        """Смена завершена (учитывается в показателях периода)"""
        return self.status != 'ACTIVE'


class FinanceCategory(Base):
    """Категории доходов и расходов (club_id = NULL: общая категория)"""
    __tablename__ = 'finance_categories'

    id = Column(Integer, primary_key=True)
    club_id = Column(Integer, ForeignKey('clubs.id', ondelete='CASCADE'))
    name = Column(String(100), nullable=False)
    type = Column(String(10), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        CheckConstraint("type IN ('income', 'expense')", name='check_category_type'),
        Index('idx_finance_categories_name', 'name', 'type'),
    )


class FinanceTransaction(Base):
    """Финансовый журнал (записи не изменяются после проводки)"""
    __tablename__ = 'finance_transactions'

    id = Column(Integer, primary_key=True)
    club_id = Column(Integer, ForeignKey('clubs.id', ondelete='CASCADE'), nullable=False)
    category_id = Column(Integer, ForeignKey('finance_categories.id'))
    amount = Column(Numeric(12, 2), nullable=False)
    type = Column(String(10), nullable=False)
    payment_method = Column(String(50))
    status = Column(String(20), default='completed', nullable=False)
    transaction_date = Column(DateTime, nullable=False)
    description = Column(Text)
    # не внешний ключ: проводки переживают удаление смены
    related_shift_report_id = Column(Integer)
    created_by = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'))
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        CheckConstraint("type IN ('income', 'expense')", name='check_transaction_type'),
        CheckConstraint("amount > 0", name='check_positive_amount'),
        UniqueConstraint(
            'related_shift_report_id', 'payment_method',
            name='uq_finance_tx_shift_channel'
        ),
        Index('idx_finance_tx_club_date', 'club_id', 'transaction_date'),
        Index('idx_finance_tx_shift', 'related_shift_report_id'),
    )


class AuditLog(Base):
    """Логи операций (аудит)"""
    __tablename__ = 'audit_log'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'))
    action = Column(String(50), nullable=False)
    entity_type = Column(String(50))
    entity_id = Column(Integer)
    old_data = Column(JSONType)
    new_data = Column(JSONType)
    created_at = Column(DateTime, default=func.now(), index=True)

    __table_args__ = (
        Index('idx_audit_log_entity', 'entity_type', 'entity_id'),
        Index('idx_audit_log_action', 'action'),
    )
