import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from canvas_backend.config import Settings, load_cors_origins, load_settings
from canvas_backend.constants import HISTORY_LIMIT, MAX_HISTORY_LIMIT
from canvas_backend.database import Database
from canvas_backend.logging_setup import setup_logging
from canvas_backend.operation_batcher import OperationBatcher
from canvas_backend.scene import build_scene
from canvas_backend.schemas import (
    CanvasState,
    EvolveRequest,
    InitResponse,
    InitStatusResponse,
    OperationRecord,
    Scene,
    SnapshotRecord,
    SnapshotRequest,
    UpdateRequest,
)
from canvas_backend.state_manager import CanvasStateManager, InvalidSectionError
from canvas_backend.state_store import AsyncCanvasStore, VersionConflictError
from canvas_backend.weather_service import AsyncWeatherService


logger = logging.getLogger(__name__)

database: Database | None = None
batcher: OperationBatcher | None = None
weather_service: AsyncWeatherService | None = None
state_manager: CanvasStateManager | None = None


async def evolution_loop(manager: CanvasStateManager, interval: float) -> None:
    """
    Периодическая эволюция холста. Ошибка одного шага не останавливает цикл.
    """

    while True:
        await asyncio.sleep(interval)
        try:
            await manager.evolve()
        except Exception:
            logger.exception("Scheduled canvas evolution failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Жизненный цикл API.
    При старте поднимает базу и сервисы,
    при выключении дописывает журнал операций и закрывает соединения.
    """

    global database, batcher, weather_service, state_manager

    settings: Settings = load_settings()
    setup_logging(settings.log_level)
    logger.info("Starting Canvas API...")

    database = Database(settings.database_url)
    try:
        await database.init_db()
    except Exception:
        logger.exception("Error creating database tables")

    store = AsyncCanvasStore(database)
    batcher = OperationBatcher(store, delay=settings.operation_flush_delay)
    weather_service = AsyncWeatherService(
        store,
        api_key=settings.openweather_api_key,
        location=settings.weather_location,
        cache_minutes=settings.weather_cache_minutes,
    )
    if not weather_service.enabled:
        logger.info("OPENWEATHER_API_KEY is not set, weather stays as stored")

    state_manager = CanvasStateManager(store, batcher, weather_service)

    evolve_task = None
    if settings.evolve_interval_seconds > 0:
        evolve_task = asyncio.create_task(
            evolution_loop(state_manager, settings.evolve_interval_seconds))
        logger.info("Scheduled evolution every %.0f s", settings.evolve_interval_seconds)

    yield

    logger.info("Stopping Canvas API...")
    if evolve_task:
        evolve_task.cancel()
        try:
            await evolve_task
        except asyncio.CancelledError:
            pass

    await batcher.close()
    await weather_service.close()
    await database.close()
    state_manager = None


# Middleware собирается при импорте, до lifespan, поэтому .env здесь не читается:
# CORS_ORIGINS берётся из окружения процесса.
CORS_ORIGINS = load_cors_origins()

app = FastAPI(title='Canvas API', lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def not_initialized() -> JSONResponse:
    return error_response(503, "Service not initialized")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Ошибки валидации запроса отдаются как 400, а не 422.
    """

    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


@app.get("/api/canvas/current", response_model=CanvasState)
async def get_current_canvas():
    """
    Текущее состояние холста. Если состояний нет, создаёт состояние по умолчанию.
    """

    if not state_manager:
        return not_initialized()

    try:
        return await state_manager.get_current_state()
    except Exception:
        logger.exception("Error getting current canvas state")
        return error_response(500, "Failed to get current canvas state")


@app.post("/api/canvas/update", response_model=CanvasState)
async def update_canvas(request: UpdateRequest):
    """
    Меняет один раздел состояния и записывает новую версию.

    Принимает {"section": "weatherData", "value": {...}}.
    """

    if not state_manager:
        return not_initialized()

    try:
        return await state_manager.update_section(
            request.section, request.value, request.modified_by)
    except InvalidSectionError as e:
        return error_response(400, str(e))
    except ValidationError as e:
        return JSONResponse(
            status_code=400,
            content={
                "error": f"Invalid value for section {request.section}",
                "details": jsonable_encoder(e.errors(include_context=False)),
            },
        )
    except ValueError as e:
        return error_response(400, str(e))
    except VersionConflictError as e:
        logger.warning("Concurrent canvas update: %s", e)
        return error_response(409, str(e))
    except Exception:
        logger.exception("Error updating canvas state")
        return error_response(500, "Failed to update canvas state")


@app.post("/api/canvas/evolve", response_model=CanvasState)
async def evolve_canvas(request: Optional[EvolveRequest] = None):
    """
    Применяет эволюцию по времени суток и погоде.
    Время и погоду можно передать явно, иначе берутся текущие.
    """

    if not state_manager:
        return not_initialized()

    request = request or EvolveRequest()

    try:
        return await state_manager.evolve(request.timestamp, request.weather)
    except VersionConflictError as e:
        logger.warning("Concurrent canvas evolution: %s", e)
        return error_response(409, str(e))
    except Exception:
        logger.exception("Error evolving canvas state")
        return error_response(500, "Failed to evolve canvas state")


@app.get("/api/canvas/evolve", response_model=CanvasState)
async def get_evolved_canvas():
    return await get_current_canvas()


@app.get("/api/canvas/scene", response_model=Scene)
async def get_canvas_scene(seed: Optional[int] = None):
    """
    Описание сцены (свет, ленты, частицы) для рендера в браузере.
    """

    if not state_manager:
        return not_initialized()

    try:
        state = await state_manager.get_current_state()
        return build_scene(state, seed)
    except Exception:
        logger.exception("Error building canvas scene")
        return error_response(500, "Failed to build canvas scene")


@app.get("/api/canvas/history", response_model=List[CanvasState])
async def get_canvas_history(limit: int = Query(HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT)):
    if not state_manager:
        return not_initialized()

    try:
        return await state_manager.get_history(limit)
    except Exception:
        logger.exception("Error reading canvas history")
        return error_response(500, "Failed to read canvas history")


@app.get("/api/canvas/versions/{version}", response_model=CanvasState)
async def get_canvas_version(version: int):
    if not state_manager:
        return not_initialized()

    try:
        state = await state_manager.get_version(version)
    except Exception:
        logger.exception("Error reading canvas version %d", version)
        return error_response(500, "Failed to read canvas version")

    if state is None:
        return error_response(404, f"Canvas version {version} not found")

    return state


@app.get("/api/canvas/operations", response_model=List[OperationRecord])
async def get_canvas_operations(limit: int = Query(HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT)):
    """
    Последние записи журнала операций. Перед чтением дописывает накопленное.
    """

    if not state_manager:
        return not_initialized()

    try:
        await batcher.flush()
        return await state_manager.store.list_operations(limit)
    except Exception:
        logger.exception("Error reading canvas operations")
        return error_response(500, "Failed to read canvas operations")


@app.post("/api/canvas/snapshots", response_model=SnapshotRecord)
async def create_canvas_snapshot(request: Optional[SnapshotRequest] = None):
    if not state_manager:
        return not_initialized()

    request = request or SnapshotRequest()

    try:
        return await state_manager.create_snapshot(request.name, request.created_by)
    except Exception:
        logger.exception("Error creating canvas snapshot")
        return error_response(500, "Failed to create canvas snapshot")


@app.get("/api/canvas/snapshots", response_model=List[SnapshotRecord])
async def get_canvas_snapshots(limit: int = Query(HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT)):
    if not state_manager:
        return not_initialized()

    try:
        return await state_manager.list_snapshots(limit)
    except Exception:
        logger.exception("Error reading canvas snapshots")
        return error_response(500, "Failed to read canvas snapshots")


@app.get("/api/init", response_model=InitStatusResponse)
async def get_init_status():
    """
    Сообщает, есть ли уже состояние холста. Ничего не создаёт.
    """

    if not state_manager:
        return not_initialized()

    try:
        initialized, state = await state_manager.get_initialization_status()
        return InitStatusResponse(initialized=initialized, state=state)
    except Exception:
        logger.exception("Error checking initialization status")
        return error_response(500, "Internal server error")


@app.post("/api/init", response_model=InitResponse)
async def init_canvas():
    if not state_manager:
        return not_initialized()

    try:
        state = await state_manager.get_current_state()
        return InitResponse(success=True, state=state)
    except Exception:
        logger.exception("Error in init endpoint")
        return error_response(500, "Internal server error")


@app.get("/health")
async def health_check():
    """
    Проверка активности сервиса.
    """

    return {
        "status": "active",
        "canvas_ready": state_manager is not None,
        "db_ready": await database.ping() if database else False,
        "weather_enabled": bool(weather_service and weather_service.enabled),
    }


def main() -> None:
    uvicorn.run(
        "canvas_backend.api:app",
        host=os.environ.get("API_HOST", "0.0.0.0"),
        port=int(os.environ.get("API_PORT", "8000")),
        reload=False,
    )


if __name__ == "__main__":
    main()
