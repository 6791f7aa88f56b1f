import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import Settings, get_settings
from app.database import Database
from app.errors import MessagingError
from app.routers import messages, users, health
from app.utils.logging_config import setup_logging
from app.utils.middleware import logging_middleware

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        setup_logging(settings)
        db = Database(settings.database_url)
        if settings.create_tables_on_startup:
            await db.create_all()
        app.state.db = db
        logger.info("Database engine started")
        yield
        # Shutdown
        await db.dispose()
        logger.info("Database engine disposed")

    app = FastAPI(
        title="Social Messaging API",
        description="Direct messages, message requests and blocking for the social app",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(logging_middleware)

    @app.exception_handler(MessagingError)
    async def messaging_error_handler(request: Request, exc: MessagingError):
        return JSONResponse({"detail": exc.message}, status_code=exc.status_code)

    app.include_router(messages.router, prefix="/api/messages", tags=["Messages"])
    app.include_router(users.router, prefix="/api/users", tags=["Users"])
    app.include_router(health.router, prefix="/api/health", tags=["Health"])

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app


app = create_app()
