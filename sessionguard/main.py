from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sessionguard.api.errors import register_exception_handlers
from sessionguard.api.v1 import admin, auth
from sessionguard.core.auth_events import shutdown_event_publisher
from sessionguard.core.config import settings
from sessionguard.core.token_purger import start_scheduler, stop_scheduler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.TOKEN_PURGE_ENABLED:
        start_scheduler()
    else:
        logger.info("Token purge scheduler disabled")
    yield
    stop_scheduler()
    shutdown_event_publisher()


app = FastAPI(title="SessionGuard Auth API", version="1.0.0", lifespan=lifespan)

# Add CORS middleware - allow everything for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(admin.router, prefix="/api/v1/admin", tags=["admin"])


@app.get("/")
def root():
    return {"message": "SessionGuard Auth API"}


@app.get("/health")
def health():
    return {"status": "healthy"}
