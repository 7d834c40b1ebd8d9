import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from conduit import models  # noqa: F401  (registers tables on Base.metadata)
from conduit.config import settings
from conduit.database import Base, engine
from conduit.exceptions import setup_exception_handlers
from conduit.logging_config import setup_logging
from conduit.middleware import TimingMiddleware
from conduit.routers import articles, profiles, users

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging(settings.LOG_LEVEL)
    if settings.AUTO_CREATE_TABLES:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    logger.info("Conduit API %s started (env=%s)", VERSION, settings.APP_ENV)
    yield
    # Shutdown
    await engine.dispose()


app = FastAPI(
    title="Conduit API",
    description="Social blogging backend: articles, tags, favorites, comments and follows",
    version=VERSION,
    lifespan=lifespan,
)

setup_exception_handlers(app)

# Middleware
app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(users.router)
app.include_router(profiles.router)
app.include_router(articles.router)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": VERSION}
