"""
FastAPI main application for ShopSphere.
"""

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import logging

from shopsphere.config import AppSettings, get_app_settings
from shopsphere.db import init_db, close_db, get_pg_pool, get_redis
from shopsphere.errors import MarketplaceError
from shopsphere.identity import RedisSessionResolver, SessionResolver, StaticSessionResolver
from shopsphere.services.messaging import InMemoryChannel, MessageChannel, RedisChannel
from shopsphere.services.payments import PaymentGateway, PayPalClient
from shopsphere.store import MarketplaceStore, MemoryStore, PostgresStore

settings = get_app_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(
    settings: AppSettings = settings,
    store: MarketplaceStore = None,
    channel: MessageChannel = None,
    gateway: PaymentGateway = None,
    sessions: SessionResolver = None
) -> FastAPI:
    """
    Build the API application.

    Backends passed in are used as-is; anything left out is created at
    startup from ``settings.storage_backend`` ("postgres" or "memory").
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events"""
        # Startup
        logger.info(f"Starting ShopSphere API ({settings.storage_backend} backend)...")
        uses_postgres = settings.storage_backend == "postgres" and (
            store is None or channel is None or sessions is None
        )
        if uses_postgres:
            await init_db(settings)
            logger.info("Database initialized")
            app.state.store = store or PostgresStore(get_pg_pool())
            app.state.channel = channel or RedisChannel(get_redis(), settings.redis.channel_prefix)
            app.state.sessions = sessions or RedisSessionResolver(get_redis(), settings.redis.session_prefix)
        else:
            app.state.store = store or MemoryStore()
            app.state.channel = channel or InMemoryChannel()
            app.state.sessions = sessions or StaticSessionResolver()
        app.state.gateway = gateway or PayPalClient(settings.paypal)
        app.state.settings = settings

        if not settings.paypal.has_credentials and gateway is None:
            logger.warning("PayPal credentials missing; checkout endpoints will fail")

        yield

        # Shutdown
        logger.info("Shutting down ShopSphere API...")
        await app.state.channel.close()
        await app.state.gateway.close()
        await app.state.store.close()
        if uses_postgres:
            await close_db()

    app = FastAPI(
        title="ShopSphere API",
        description="Marketplace listings, price negotiation, chat and PayPal checkout",
        version="0.1.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        field = ".".join(str(part) for part in errors[0]["loc"][1:]) if errors else ""
        message = f"Invalid {field}" if field else "Invalid request"
        return JSONResponse(status_code=400, content={"error": message})

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "version": "0.1.0"
        }

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": "ShopSphere API",
            "docs": "/docs",
            "health": "/health"
        }

    # Import and include routers
    from shopsphere.routers import products, profiles, negotiations, messages, payments

    app.include_router(products.router, prefix="/api", tags=["products"])
    app.include_router(profiles.router, prefix="/api", tags=["profiles"])
    app.include_router(negotiations.router, prefix="/api", tags=["negotiations"])
    app.include_router(messages.router, prefix="/api", tags=["messages"])
    app.include_router(payments.router, prefix="/api", tags=["payments"])

    return app


app = create_app()
