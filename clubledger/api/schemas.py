"""
Pydantic схемы для API
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, date
from decimal import Decimal

from clubledger.services.batch_import import BatchShiftRow


class ResponseSchema(BaseModel):
    """Стандартный ответ API"""
    status: str = "success"
    message: Optional[str] = None
    data: Optional[Any] = None


class CheckInSchema(BaseModel):
    """Открытие смены"""
    user_id: int


class VerifySchema(BaseModel):
    """Подтверждение смены владельцем"""
    verified_by: Optional[int] = None


class StatusChangeSchema(BaseModel):
    """Смена статуса"""
    status: str = Field(..., pattern="^(CLOSED|VERIFIED|PAID)$")
    actor_id: Optional[int] = None


class BatchImportSchema(BaseModel):
    """Пакет смен"""
    rows: List[BatchShiftRow]

    class Config:
        json_schema_extra = {
            "example": {
                "rows": [
                    {
                        "employee_name": "Иванов Иван Иванович",
                        "check_in": "01.10.2024 10:00",
                        "check_out": "01.10.2024 22:00",
                        "cash_income": 5000,
                        "card_income": 3000
                    }
                ]
            }
        }


class EvaluateSchema(BaseModel):
    """Предварительный расчет зарплаты по формуле"""
    shift: Dict[str, Any] = Field(default_factory=dict)
    formula: Any
    context: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "shift": {"id": 1, "total_hours": 12, "report_data": {"bar_sales": 10}},
                "formula": [
                    {"kind": "HOURLY", "rate": 200},
                    {"kind": "PERCENT_OF_METRIC", "metric_key": "total_revenue", "percent": 3}
                ],
                "context": {"total_revenue": 20000}
            }
        }


class FinanceImportSchema(BaseModel):
    """Проводка выручки смен за период"""
    start_date: date
    end_date: date
    preview: bool = False
    created_by: Optional[int] = None


class SchemeCreateSchema(BaseModel):
    """Новая схема оплаты"""
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    formula: Any
    standard_monthly_shifts: Optional[int] = Field(None, ge=0)
    period_bonuses: List[Dict[str, Any]] = Field(default_factory=list)


class SchemeVersionSchema(BaseModel):
    """Новая версия формулы"""
    formula: Any


class AssignSchemeSchema(BaseModel):
    """Назначение схемы сотруднику"""
    user_id: int
    scheme_id: int


class ShiftSchema(BaseModel):
    """Смена в ответе API"""
    id: int
    user_id: Optional[int] = None
    club_id: int
    check_in: datetime
    check_out: Optional[datetime] = None
    total_hours: Optional[Decimal] = None
    cash_income: Optional[Decimal] = None
    card_income: Optional[Decimal] = None
    expenses: Optional[Decimal] = None
    report_comment: Optional[str] = None
    report_data: Optional[Dict[str, Any]] = None
    shift_type: Optional[str] = None
    status: str
    calculated_salary: Optional[Decimal] = None
    salary_breakdown: Optional[List[Dict[str, Any]]] = None
    scheme_version_id: Optional[int] = None
    salary_snapshot: Optional[Dict[str, Any]] = None
    has_owner_corrections: bool = False
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None

    class Config:
        from_attributes = True
