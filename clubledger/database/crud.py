"""
CRUD операции для работы с базой данных
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, or_, func, delete
from clubledger.database.models import (
    Club, User, ReportTemplate, SalaryScheme, SalarySchemeVersion,
    EmployeeSalaryAssignment, EmployeeShiftSchedule, Shift,
    FinanceCategory, FinanceTransaction, AuditLog
)
from datetime import datetime
from typing import List, Optional, Dict
import logging

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════
# CLUBS & USERS
# ═══════════════════════════════════════════════════

async def get_club(session: AsyncSession, club_id: int) -> Optional[Club]:
    """Получить клуб по ID"""
    return await session.get(Club, club_id)


async def get_user(session: AsyncSession, user_id: int) -> Optional[User]:
    """Получить сотрудника по ID"""
    return await session.get(User, user_id)


async def get_user_by_full_name(session: AsyncSession, full_name: str) -> Optional[User]:
    """Найти активного сотрудника по ФИО (без учета регистра и лишних пробелов)"""
    name = ' '.join((full_name or '').split())
    if not name:
        return None
    result = await session.execute(
        select(User).where(User.full_name == name, User.is_active == True).order_by(User.id)
    )
    user = result.scalars().first()
    if user:
        return user

    # lower() в SQLite не работает с кириллицей, поэтому сравниваем в Python
    result = await session.execute(select(User).where(User.is_active == True).order_by(User.id))
    wanted = name.casefold()
    for candidate in result.scalars().all():
        if ' '.join((candidate.full_name or '').split()).casefold() == wanted:
            return candidate
    return None


# ═══════════════════════════════════════════════════
# REPORT TEMPLATES
# ═══════════════════════════════════════════════════

async def get_active_report_template(session: AsyncSession, club_id: int) -> Optional[ReportTemplate]:
    """Последний активный шаблон отчета клуба"""
    result = await session.execute(
        select(ReportTemplate).where(
            ReportTemplate.club_id == club_id,
            ReportTemplate.is_active == True
        ).order_by(ReportTemplate.created_at.desc(), ReportTemplate.id.desc())
    )
    return result.scalars().first()


# ═══════════════════════════════════════════════════
# SALARY SCHEMES
# ═══════════════════════════════════════════════════

async def get_scheme(session: AsyncSession, scheme_id: int) -> Optional[SalaryScheme]:
    """Получить схему оплаты по ID"""
    return await session.get(SalaryScheme, scheme_id)


async def get_assigned_scheme(session: AsyncSession, user_id: int, club_id: int) -> Optional[SalaryScheme]:
    """Активная схема, назначенная сотруднику в клубе"""
    result = await session.execute(
        select(SalaryScheme)
        .join(EmployeeSalaryAssignment, EmployeeSalaryAssignment.scheme_id == SalaryScheme.id)
        .where(
            EmployeeSalaryAssignment.user_id == user_id,
            EmployeeSalaryAssignment.club_id == club_id,
            SalaryScheme.is_active == True
        )
        .order_by(EmployeeSalaryAssignment.assigned_at.desc())
    )
    return result.scalars().first()


async def get_assignment(session: AsyncSession, user_id: int, club_id: int) -> Optional[EmployeeSalaryAssignment]:
    """Назначение схемы сотруднику в клубе"""
    result = await session.execute(
        select(EmployeeSalaryAssignment).where(
            EmployeeSalaryAssignment.user_id == user_id,
            EmployeeSalaryAssignment.club_id == club_id
        )
    )
    return result.scalars().first()


async def get_latest_scheme_version(session: AsyncSession, scheme_id: int) -> Optional[SalarySchemeVersion]:
    """Последняя опубликованная версия формулы"""
    result = await session.execute(
        select(SalarySchemeVersion)
        .where(SalarySchemeVersion.scheme_id == scheme_id)
        .order_by(SalarySchemeVersion.version.desc())
    )
    return result.scalars().first()


async def get_scheme_version(session: AsyncSession, version_id: int) -> Optional[SalarySchemeVersion]:
    """Получить версию формулы по ID"""
    return await session.get(SalarySchemeVersion, version_id)


async def get_scheme_versions(session: AsyncSession, scheme_id: int) -> List[SalarySchemeVersion]:
    """Все версии схемы по возрастанию номера"""
    result = await session.execute(
        select(SalarySchemeVersion)
        .where(SalarySchemeVersion.scheme_id == scheme_id)
        .order_by(SalarySchemeVersion.version)
    )
    return result.scalars().all()


async def get_max_scheme_version(session: AsyncSession, scheme_id: int) -> int:
    """Номер последней версии (0, если версий нет)"""
    result = await session.execute(
        select(func.coalesce(func.max(SalarySchemeVersion.version), 0))
        .where(SalarySchemeVersion.scheme_id == scheme_id)
    )
    return result.scalar() or 0


async def get_planned_shifts(
    session: AsyncSession,
    club_id: int,
    user_id: int,
    year: int,
    month: int
) -> Optional[int]:
    """Плановое число смен сотрудника на месяц (None, если план не задан)"""
    result = await session.execute(
        select(EmployeeShiftSchedule.planned_shifts).where(
            EmployeeShiftSchedule.club_id == club_id,
            EmployeeShiftSchedule.user_id == user_id,
            EmployeeShiftSchedule.year == year,
            EmployeeShiftSchedule.month == month
        )
    )
    return result.scalar()


# ═══════════════════════════════════════════════════
# SHIFTS
# ═══════════════════════════════════════════════════

async def get_shift(session: AsyncSession, shift_id: int) -> Optional[Shift]:
    """Получить смену по ID"""
    return await session.get(Shift, shift_id)


async def get_active_shift(session: AsyncSession, user_id: int, club_id: int) -> Optional[Shift]:
    """Открытая смена сотрудника в клубе"""
    result = await session.execute(
        select(Shift).where(
            Shift.user_id == user_id,
            Shift.club_id == club_id,
            Shift.status == 'ACTIVE'
        ).order_by(Shift.check_in.desc())
    )
    return result.scalars().first()


async def get_shifts_for_period(
    session: AsyncSession,
    club_id: int,
    start: datetime,
    end: datetime,
    user_id: Optional[int] = None,
    statuses: Optional[List[str]] = None
) -> List[Shift]:
    """Смены клуба с началом в [start, end)"""
    query = select(Shift).where(
        and_(
            Shift.club_id == club_id,
            Shift.check_in >= start,
            Shift.check_in < end
        )
    )
    if user_id is not None:
        query = query.where(Shift.user_id == user_id)
    if statuses:
        query = query.where(Shift.status.in_(statuses))

    query = query.order_by(Shift.check_in, Shift.id)
    result = await session.execute(query)
    return result.scalars().all()


# ═══════════════════════════════════════════════════
# FINANCE
# ═══════════════════════════════════════════════════

async def count_shift_transactions(session: AsyncSession, shift_id: int) -> int:
    """Сколько проводок ссылается на смену"""
    result = await session.execute(
        select(func.count(FinanceTransaction.id)).where(
            FinanceTransaction.related_shift_report_id == shift_id
        )
    )
    return result.scalar() or 0


async def get_shift_transactions(session: AsyncSession, shift_id: int) -> List[FinanceTransaction]:
    """Проводки смены"""
    result = await session.execute(
        select(FinanceTransaction)
        .where(FinanceTransaction.related_shift_report_id == shift_id)
        .order_by(FinanceTransaction.id)
    )
    return result.scalars().all()


async def resolve_revenue_category(
    session: AsyncSession,
    club_id: int,
    name: str
) -> Optional[FinanceCategory]:
    """
    Категория выручки клуба.

    Категория клуба имеет приоритет над общей (club_id IS NULL).
    """
    result = await session.execute(
        select(FinanceCategory).where(
            FinanceCategory.name == name,
            FinanceCategory.type == 'income',
            FinanceCategory.is_active == True,
            or_(FinanceCategory.club_id == club_id, FinanceCategory.club_id.is_(None))
        ).order_by(FinanceCategory.club_id.is_(None), FinanceCategory.id)
    )
    return result.scalars().first()


# ═══════════════════════════════════════════════════
# AUDIT LOG
# ═══════════════════════════════════════════════════

async def create_audit_log(session: AsyncSession, data: Dict) -> AuditLog:
    """Добавить запись аудита (фиксируется вместе с транзакцией вызывающего)"""
    log = AuditLog(**data)
    session.add(log)
    return log


async def delete_audit_for_shift(session: AsyncSession, shift_id: int) -> int:
    """Удалить журнал аудита смены"""
    result = await session.execute(
        delete(AuditLog).where(
            AuditLog.entity_type == 'shift',
            AuditLog.entity_id == shift_id
        )
    )
    return result.rowcount or 0
