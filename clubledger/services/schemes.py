"""
Схемы оплаты: создание, публикация версий, назначение сотрудникам

Версии формулы только добавляются: опубликованная версия не изменяется,
а смены, посчитанные по ней, остаются на ней до явного пересчета.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import crud
from ..database.models import SalaryScheme, SalarySchemeVersion, EmployeeSalaryAssignment
from ..exceptions import ConfigurationError, NotFoundError, ValidationError
from .formula import normalize_formula
from .ladder import PeriodBonus
from .shift_lifecycle import utc_now

logger = logging.getLogger(__name__)

PUBLISH_ATTEMPTS = 3


def _check_formula(formula):
    try:
        normalize_formula(formula)
    except ConfigurationError as e:
        raise ValidationError(str(e)) from e


def _check_period_bonuses(period_bonuses) -> List[Dict[str, Any]]:
    result = []
    for bonus in period_bonuses or []:
        try:
            PeriodBonus.model_validate(bonus)
        except Exception as e:
            raise ValidationError(f"Invalid period bonus: {e}") from e
        result.append(bonus)
    return result


class SchemeService:
    """Схемы оплаты клуба"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_scheme(
        self,
        club_id: int,
        name: str,
        formula,
        standard_monthly_shifts: Optional[int] = None,
        period_bonuses: Optional[List[Dict[str, Any]]] = None,
        description: Optional[str] = None
    ) -> SalaryScheme:
        """Создать схему с первой версией формулы"""
        _check_formula(formula)
        scheme = SalaryScheme(
            club_id=club_id,
            name=name,
            description=description,
            standard_monthly_shifts=standard_monthly_shifts,
            period_bonuses=_check_period_bonuses(period_bonuses),
            is_active=True
        )
        self.session.add(scheme)
        await self.session.flush()
        self.session.add(SalarySchemeVersion(scheme_id=scheme.id, version=1, formula=formula))
        await self.session.commit()
        logger.info(f"Salary scheme {scheme.id} '{name}' created for club {club_id}")
        return scheme

    async def publish_version(self, scheme_id: int, formula) -> SalarySchemeVersion:
        """
        Опубликовать новую версию формулы (номер = последний + 1).

        Гонку двух публикаций разрешает уникальный индекс (scheme_id, version):
        проигравший повторяет попытку со следующим номером.
        """
        _check_formula(formula)
        if await crud.get_scheme(self.session, scheme_id) is None:
            raise NotFoundError(f"Salary scheme {scheme_id} not found")

        for attempt in range(1, PUBLISH_ATTEMPTS + 1):
            number = await crud.get_max_scheme_version(self.session, scheme_id) + 1
            version = SalarySchemeVersion(scheme_id=scheme_id, version=number, formula=formula)
            self.session.add(version)
            try:
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                logger.warning(f"Version {number} of scheme {scheme_id} already taken, attempt {attempt}")
                continue
            logger.info(f"Published version {number} of salary scheme {scheme_id}")
            return version

        raise ValidationError(f"Could not publish a new version of scheme {scheme_id}")

    async def update_period_bonuses(self, scheme_id: int, period_bonuses, standard_monthly_shifts=None) -> SalaryScheme:
        """Изменить премии периода схемы"""
        scheme = await crud.get_scheme(self.session, scheme_id)
        if scheme is None:
            raise NotFoundError(f"Salary scheme {scheme_id} not found")
        scheme.period_bonuses = _check_period_bonuses(period_bonuses)
        if standard_monthly_shifts is not None:
            scheme.standard_monthly_shifts = standard_monthly_shifts
        await self.session.commit()
        return scheme

    async def assign_scheme(self, user_id: int, club_id: int, scheme_id: int) -> EmployeeSalaryAssignment:
        """Назначить схему сотруднику (заменяет прежнее назначение в клубе)"""
        scheme = await crud.get_scheme(self.session, scheme_id)
        if scheme is None or scheme.club_id != club_id:
            raise NotFoundError(f"Salary scheme {scheme_id} not found in club {club_id}")
        if await crud.get_user(self.session, user_id) is None:
            raise ValidationError(f"Employee {user_id} not found")

        assignment = await crud.get_assignment(self.session, user_id, club_id)
        if assignment is None:
            assignment = EmployeeSalaryAssignment(user_id=user_id, club_id=club_id, scheme_id=scheme_id)
            self.session.add(assignment)
        else:
            assignment.scheme_id = scheme_id
            assignment.assigned_at = utc_now()
        await self.session.commit()
        logger.info(f"Scheme {scheme_id} assigned to user {user_id} in club {club_id}")
        return assignment
