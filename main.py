import logging
import time
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from bitrix.fields import validate_field_maps
from core.config import settings
from core.errors import SyncError
from core.log_config import LogType, log_event, setup_logging
from deals.router import router as deals_router
from deals.schemas import ErrorResponse
from models.database import init_db

# Настройка логирования
setup_logging(settings.LOG_LEVEL, settings.LOG_DIR)
logger = logging.getLogger(__name__)

app = FastAPI(title="Bitrix Deals Sync API")


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError):
    """Ошибки синхронизации: детали в лог, клиенту общее сообщение"""
    log_event(LogType.ERROR, exc.source, f"{request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(message=exc.public_message).model_dump()
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    log_event(LogType.ERROR, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse().model_dump()
    )


# Обработчик ошибок валидации
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Логируем ошибки валидации запросов"""
    body_bytes = await request.body()
    logger.error(f"Ошибка валидации запроса {request.method} {request.url.path}")
    logger.error(f"Ошибки валидации: {exc.errors()}")
    logger.error(f"Body: {body_bytes.decode('utf-8', errors='replace') if body_bytes else 'empty'}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(message="Invalid request").model_dump()
    )


# CORS: по умолчанию разрешаем все origins (сервис вызывается из приложений Bitrix24)
if settings.ALLOWED_ORIGINS:
    ALLOWED_ORIGINS = [origin.strip() for origin in settings.ALLOWED_ORIGINS.split(",") if origin.strip()]
else:
    ALLOWED_ORIGINS = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


# Инициализация БД при старте с повторными попытками
@app.on_event("startup")
def startup_event():
    validate_field_maps()

    max_retries = 10
    retry_delay = 2

    for attempt in range(max_retries):
        try:
            init_db()
            logger.info("✅ Database initialized successfully")
            break
        except Exception as e:
            if attempt < max_retries - 1:
                logger.warning(f"⚠️ Database connection failed (attempt {attempt + 1}/{max_retries}): {e}")
                logger.info(f"   Retrying in {retry_delay} seconds...")
                time.sleep(retry_delay)
            else:
                logger.error(f"❌ Failed to initialize database after {max_retries} attempts: {e}")
                raise


# Роутеры
app.include_router(deals_router)


@app.get("/")
def root():
    return {"status": "ok", "version": "1.0.0", "message": "Bitrix Deals Sync API"}


@app.get("/health")
def health_check():
    """Health check endpoint для мониторинга"""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=settings.PORT)
