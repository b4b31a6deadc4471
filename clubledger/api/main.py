"""
FastAPI приложение
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from clubledger import __version__
from clubledger.config import settings
from clubledger.api import routes
from clubledger.database.db import init_db, close_db
from clubledger.exceptions import (
    ClubLedgerError, ConfigurationError, ValidationError, InvalidTransitionError,
    NotFoundError, AlreadyImportedError, RevenueCategoryMissingError
)
import logging
import sys


def setup_logging():
    """Настройка логирования"""
    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.LOG_FILE:
        handlers.append(logging.FileHandler(settings.LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


setup_logging()
logger = logging.getLogger(__name__)

# Ошибка -> HTTP статус (порядок важен: подклассы раньше базовых)
ERROR_STATUS = (
    (AlreadyImportedError, 409),
    (InvalidTransitionError, 409),
    (NotFoundError, 404),
    (ValidationError, 400),
    (ConfigurationError, 422),
    (RevenueCategoryMissingError, 422),
)

# Создание приложения
app = FastAPI(
    title="Club Ledger API",
    description="Расчет зарплаты за смены и проводка выручки клубов в финансовый журнал",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Регистрация роутов
app.include_router(routes.router, prefix="/api", tags=["api"])


@app.on_event("startup")
async def startup():
    """Действия при запуске"""
    await init_db()
    logger.info("API Server started successfully")


@app.on_event("shutdown")
async def shutdown():
    """Действия при остановке"""
    await close_db()
    logger.info("API Server stopped")


@app.get("/")
async def root():
    """Корневой endpoint"""
    return {
        "service": "Club Ledger API",
        "version": __version__,
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "ok",
        "service": "clubledger-api"
    }


@app.exception_handler(ClubLedgerError)
async def club_ledger_error_handler(request: Request, exc: ClubLedgerError):
    """Ошибки расчета и проводки -> JSON ответ"""
    status_code = 400
    for error_class, code in ERROR_STATUS:
        if isinstance(exc, error_class):
            status_code = code
            break
    logger.warning(f"{request.method} {request.url.path} -> {status_code}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "detail": str(exc)}
    )


@app.exception_handler(404)
async def not_found_handler(request, exc):
    """Обработчик 404"""
    return JSONResponse(
        status_code=404,
        content={"status": "error", "detail": "Not found"}
    )


@app.exception_handler(500)
async def internal_error_handler(request, exc):
    """Обработчик 500"""
    logger.error(f"Internal server error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"status": "error", "detail": "Internal server error"}
    )


# Для запуска напрямую через uvicorn
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "clubledger.api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=True
    )
