"""
Ошибки расчета зарплаты и проводки выручки
"""


class ClubLedgerError(Exception):
    """Базовая ошибка"""


class ConfigurationError(ClubLedgerError):
    """Схема не назначена или формула некорректна (зарплата = 0)"""


class ValidationError(ClubLedgerError):
    """Некорректные входные данные смены"""


class InvalidTransitionError(ValidationError):
    """Недопустимый переход статуса смены"""


class NotFoundError(ClubLedgerError):
    """Объект не найден"""


class AlreadyImportedError(ClubLedgerError):
    """Выручка смены уже проведена в журнал"""

    def __init__(self, shift_id: int, message: str = None):
        self.shift_id = shift_id
        super().__init__(message or f"Shift {shift_id} is already imported to the ledger")


class StorageConflictError(AlreadyImportedError):
    """Сработало ограничение уникальности (смена, канал) в БД"""


class RevenueCategoryMissingError(ClubLedgerError):
    """Не найдена категория выручки клуба"""
