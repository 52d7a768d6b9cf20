import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from faremesh.config import settings
from faremesh.db.database import engine, Base, async_session_maker
from faremesh.db.redis import get_redis, close_redis
from faremesh.api.v1.router import api_router
from faremesh.services.cache import SearchCache
from faremesh.services.flight_search import FlightSearchService
from faremesh.services.suppliers.registry import SupplierRegistry
from faremesh.services.suppliers.sources import DatabaseSupplierSource, StaticSupplierSource
import faremesh.models  # noqa: F401 — registra tutti i modelli con Base

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def build_search_service() -> FlightSearchService:
    registry = SupplierRegistry(
        static=StaticSupplierSource(settings.suppliers.suppliers),
        persisted=DatabaseSupplierSource(async_session_maker),
        default=settings.suppliers.default,
    )
    return FlightSearchService(registry, settings.suppliers, SearchCache(settings.suppliers.cache))


###############---############
# REMEMBER TO SWITCH TO Alembic migrations IN PROD
###############---############
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if settings.suppliers.cache.enabled:
        redis = await get_redis()
        await redis.ping()  # verifica connessione Redis all'avvio

    app.state.search_service = build_search_service()

    yield

    # Shutdown
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="FareMesh API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(api_router)


@app.get("/api/v1/health")
async def health():
    return {"status": "ok", "env": settings.app_env}
