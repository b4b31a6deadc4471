"""
API маршруты
"""
from fastapi import APIRouter, HTTPException, Header, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, time, timedelta
from typing import Optional
import logging

from clubledger.api.schemas import (
    ResponseSchema, CheckInSchema, VerifySchema, StatusChangeSchema,
    BatchImportSchema, EvaluateSchema, FinanceImportSchema,
    SchemeCreateSchema, SchemeVersionSchema, AssignSchemeSchema, ShiftSchema
)
from clubledger.config import settings
from clubledger.database import crud
from clubledger.database.db import get_session
from clubledger.exceptions import NotFoundError
from clubledger.services.batch_import import BatchImportRunner
from clubledger.services.excel_import import parse_shift_workbook, template_bytes
from clubledger.services.formula import evaluate
from clubledger.services.ledger_import import LedgerImporter
from clubledger.services.salary_summary import SalarySummaryService
from clubledger.services.schemes import SchemeService
from clubledger.services.shift_lifecycle import ShiftCreate, ShiftPatch, ShiftService, utc_now

logger = logging.getLogger(__name__)

router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def verify_api_key(x_api_key: str = Header(..., alias="X-API-Key")):
    """Проверка API ключа"""
    if x_api_key != settings.API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API Key")
    return x_api_key


def shift_data(shift) -> dict:
    return ShiftSchema.model_validate(shift).model_dump(mode='json')


def _period(year: Optional[int], month: Optional[int]):
    today = utc_now()
    return year or today.year, month or today.month


# ═══════════════════════════════════════════════════
# SHIFTS
# ═══════════════════════════════════════════════════

@router.post("/clubs/{club_id}/shifts/check-in", response_model=ResponseSchema)
async def check_in(
    club_id: int,
    body: CheckInSchema,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Открыть смену сотрудника"""
    shift = await ShiftService(session).check_in(body.user_id, club_id)
    return ResponseSchema(message="Shift opened", data=shift_data(shift))


@router.post("/shifts/{shift_id}/check-out", response_model=ResponseSchema)
async def check_out(
    shift_id: int,
    report: Optional[ShiftPatch] = None,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """
    Закрыть смену

    - **cash_income**, **card_income**, **expenses**: итоги смены
    - **report_data**: поля отчета по шаблону клуба
    """
    shift = await ShiftService(session).check_out(shift_id, report)
    return ResponseSchema(message="Shift closed", data=shift_data(shift))


@router.post("/clubs/{club_id}/shifts", response_model=ResponseSchema)
async def create_shift(
    club_id: int,
    body: ShiftCreate,
    actor_id: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Внести смену задним числом (сразу CLOSED)"""
    shift = await ShiftService(session).create_shift(club_id, body, actor_id=actor_id)
    return ResponseSchema(message="Shift created", data=shift_data(shift))


@router.get("/shifts/import-template")
async def shift_import_template(api_key: str = Depends(verify_api_key)):
    """Шаблон Excel для пакетного импорта смен"""
    return Response(
        content=template_bytes(),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": "attachment; filename=shifts_template.xlsx"}
    )


@router.get("/shifts/{shift_id}", response_model=ResponseSchema)
async def get_shift(
    shift_id: int,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Получить смену"""
    shift = await crud.get_shift(session, shift_id)
    if shift is None:
        raise NotFoundError(f"Shift {shift_id} not found")
    return ResponseSchema(data=shift_data(shift))


@router.patch("/shifts/{shift_id}", response_model=ResponseSchema)
async def update_shift(
    shift_id: int,
    patch: ShiftPatch,
    actor_id: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Изменить смену (передаются только изменяемые поля)"""
    shift = await ShiftService(session).update_shift(shift_id, patch, actor_id=actor_id)
    return ResponseSchema(message="Shift updated", data=shift_data(shift))


@router.post("/shifts/{shift_id}/verify", response_model=ResponseSchema)
async def verify_shift(
    shift_id: int,
    body: VerifySchema,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Подтвердить смену и провести выручку в журнал"""
    shift, transactions = await ShiftService(session).verify(shift_id, verified_by=body.verified_by)
    return ResponseSchema(
        message="Shift verified",
        data={
            "shift": shift_data(shift),
            "transactions_created": [t.id for t in transactions]
        }
    )


@router.post("/shifts/{shift_id}/status", response_model=ResponseSchema)
async def change_shift_status(
    shift_id: int,
    body: StatusChangeSchema,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Перевести смену в следующий статус"""
    shift = await ShiftService(session).change_status(shift_id, body.status, actor_id=body.actor_id)
    return ResponseSchema(message=f"Shift is {shift.status}", data=shift_data(shift))


@router.post("/shifts/{shift_id}/paid", response_model=ResponseSchema)
async def mark_shift_paid(
    shift_id: int,
    actor_id: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Отметить выплату зарплаты за смену"""
    shift = await ShiftService(session).mark_paid(shift_id, actor_id=actor_id)
    return ResponseSchema(message="Shift paid", data=shift_data(shift))


@router.post("/shifts/{shift_id}/recalculate", response_model=ResponseSchema)
async def recalculate_shift(
    shift_id: int,
    actor_id: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Пересчитать зарплату по последней версии схемы"""
    shift = await ShiftService(session).recalculate(shift_id, actor_id=actor_id)
    return ResponseSchema(message="Salary recalculated", data=shift_data(shift))


@router.delete("/shifts/{shift_id}", response_model=ResponseSchema)
async def delete_shift(
    shift_id: int,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Удалить смену (проводки журнала сохраняются)"""
    orphaned = await ShiftService(session).delete_shift(shift_id)
    return ResponseSchema(
        message="Shift deleted",
        data={"shift_id": shift_id, "orphaned_transactions": orphaned}
    )


# ═══════════════════════════════════════════════════
# BATCH IMPORT
# ═══════════════════════════════════════════════════

@router.post("/clubs/{club_id}/shifts/batch", response_model=ResponseSchema)
async def batch_import(
    club_id: int,
    body: BatchImportSchema,
    actor_id: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Пакетный импорт смен: ошибки строк не прерывают импорт"""
    result = await BatchImportRunner(session).process_batch(club_id, body.rows, actor_id=actor_id)
    return ResponseSchema(
        message=f"Imported {result.imported}, failed {result.failed}",
        data=result.model_dump(mode='json')
    )


@router.post("/clubs/{club_id}/shifts/batch/excel", response_model=ResponseSchema)
async def batch_import_excel(
    club_id: int,
    request: Request,
    actor_id: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Пакетный импорт смен из xlsx (тело запроса - файл)"""
    rows = parse_shift_workbook(await request.body())
    result = await BatchImportRunner(session).process_batch(club_id, rows, actor_id=actor_id)
    return ResponseSchema(
        message=f"Imported {result.imported}, failed {result.failed}",
        data=result.model_dump(mode='json')
    )


# ═══════════════════════════════════════════════════
# SALARY
# ═══════════════════════════════════════════════════

@router.post("/salary/evaluate", response_model=ResponseSchema)
async def evaluate_formula(body: EvaluateSchema, api_key: str = Depends(verify_api_key)):
    """Предварительный расчет зарплаты за смену (без сохранения)"""
    result = evaluate(body.shift, body.formula, body.context)
    return ResponseSchema(data=result.model_dump(mode='json'))


@router.get("/clubs/{club_id}/salaries/summary", response_model=ResponseSchema)
async def salary_summary(
    club_id: int,
    user_id: int,
    year: Optional[int] = None,
    month: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Начисления сотрудника за месяц с раскладкой премий по сменам"""
    year, month = _period(year, month)
    data = await SalarySummaryService(session).employee_summary(club_id, user_id, year, month)
    return ResponseSchema(data=data)


@router.get("/clubs/{club_id}/employees/{user_id}/kpi", response_model=ResponseSchema)
async def kpi_progress(
    club_id: int,
    user_id: int,
    year: Optional[int] = None,
    month: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Прогресс премий периода сотрудника"""
    year, month = _period(year, month)
    data = await SalarySummaryService(session).kpi_progress(club_id, user_id, year, month)
    return ResponseSchema(data=data)


@router.post("/clubs/{club_id}/schemes", response_model=ResponseSchema)
async def create_scheme(
    club_id: int,
    body: SchemeCreateSchema,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Создать схему оплаты (версия 1)"""
    scheme = await SchemeService(session).create_scheme(
        club_id, body.name, body.formula,
        standard_monthly_shifts=body.standard_monthly_shifts,
        period_bonuses=body.period_bonuses,
        description=body.description
    )
    return ResponseSchema(message="Scheme created", data={"scheme_id": scheme.id, "version": 1})


@router.post("/schemes/{scheme_id}/versions", response_model=ResponseSchema)
async def publish_scheme_version(
    scheme_id: int,
    body: SchemeVersionSchema,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Опубликовать новую версию формулы"""
    version = await SchemeService(session).publish_version(scheme_id, body.formula)
    return ResponseSchema(
        message="Version published",
        data={"scheme_id": scheme_id, "version_id": version.id, "version": version.version}
    )


@router.get("/schemes/{scheme_id}/versions", response_model=ResponseSchema)
async def list_scheme_versions(
    scheme_id: int,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Версии формулы схемы"""
    versions = await crud.get_scheme_versions(session, scheme_id)
    return ResponseSchema(data=[
        {"id": v.id, "version": v.version, "formula": v.formula, "created_at": v.created_at.isoformat()}
        for v in versions
    ])


@router.post("/clubs/{club_id}/assignments", response_model=ResponseSchema)
async def assign_scheme(
    club_id: int,
    body: AssignSchemeSchema,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Назначить схему оплаты сотруднику"""
    await SchemeService(session).assign_scheme(body.user_id, club_id, body.scheme_id)
    return ResponseSchema(message="Scheme assigned")


# ═══════════════════════════════════════════════════
# FINANCE
# ═══════════════════════════════════════════════════

@router.post("/clubs/{club_id}/finance/import/generate", response_model=ResponseSchema)
async def generate_finance_import(
    club_id: int,
    body: FinanceImportSchema,
    session: AsyncSession = Depends(get_session),
    api_key: str = Depends(verify_api_key)
):
    """Провести выручку завершенных смен за период (preview - только посчитать)"""
    start = datetime.combine(body.start_date, time.min)
    end = datetime.combine(body.end_date, time.min) + timedelta(days=1)
    stats = await LedgerImporter(session).import_range(
        club_id, start, end, created_by=body.created_by, preview=body.preview
    )
    stats['totals'] = {key: str(value) for key, value in stats['totals'].items()}
    return ResponseSchema(
        message="Preview" if body.preview else "Import completed",
        data=stats
    )
