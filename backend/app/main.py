from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.logging import configure_logging, get_logger
from app.db.session import engine
from app.api.routes.health import router as health_router
from app.api.routes.chat import router as chat_router
from app.api.routes.chat_ws import router as chat_ws_router
from app.api.routes.catalog import router as catalog_router
from app.services.chat.connection_registry import ConnectionRegistry
from app.services.search.vector_index import vector_index_client

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    app.state.connection_registry = ConnectionRegistry()
    logger.info(f"{settings.PROJECT_NAME} is starting up...")
    yield
    logger.info(f"{settings.PROJECT_NAME} is shutting down...")
    await app.state.connection_registry.close_all()
    await vector_index_client.aclose()
    await engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
    lifespan=lifespan,
)

# CORS configuration
allowed_origins = ["http://localhost:5173", "http://localhost:8080", "http://localhost:3000"]
if settings.ALLOWED_ORIGINS and settings.ALLOWED_ORIGINS != "*":
    allowed_origins = [origin.strip() for origin in settings.ALLOWED_ORIGINS.split(",")] + allowed_origins
elif settings.ALLOWED_ORIGINS == "*":
    allowed_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Include routers
app.include_router(health_router, tags=["Health"])
app.include_router(chat_router, prefix=f"{settings.API_PREFIX}/chat", tags=["Chat"])
app.include_router(catalog_router, prefix=f"{settings.API_PREFIX}/catalog", tags=["Catalog"])
app.include_router(chat_ws_router, tags=["Chat"])
