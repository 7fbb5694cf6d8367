from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from assessment_api import config
from assessment_api.admin_routers import router as admin_router
from assessment_api.database import Base, async_session, engine
from assessment_api.errors import register_error_handlers
from assessment_api.logging_config import configure_logging
from assessment_api.routers import router
from assessment_api.security import ensure_admin

logger = configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with async_session() as session:
        await ensure_admin(session)
    logger.info("Assessment API started")
    yield
    await engine.dispose()


app = FastAPI(
    title="Student Assessment API",
    description="API for authoring tests, collecting answers and reporting on results",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(router)
app.include_router(admin_router)
