"""API principal del motor de tickets y check-in"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
import logging
from contextlib import asynccontextmanager

from app.core.config import settings
from shared.database import connection
from shared.database.connection import init_db, close_db
from shared.cache.redis_client import init_redis, close_redis, get_redis
from shared.exceptions import TicketingError, ticketing_error_handler
from shared.utils.rate_limiter import limiter, rate_limit_exceeded_handler

# Configurar logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle events de la aplicación"""
    # Startup
    logger.info("Iniciando aplicación...")
    await init_db()
    await init_redis()
    logger.info("Aplicación iniciada")
    yield
    # Shutdown
    logger.info("Cerrando aplicación...")
    await close_db()
    await close_redis()
    logger.info("Aplicación cerrada")


app = FastAPI(
    title="Vybe Tickets API",
    description="Registro, emisión de tickets y check-in de eventos",
    version="1.0.0",
    lifespan=lifespan
)

# CORS primero (antes de rate limiting)
if settings.APP_ENV == "development":
    logger.info("Modo desarrollo: CORS configurado para permitir todos los orígenes")
    allow_origins = ["*"]
    allow_credentials = False  # No se puede usar credentials con allow_origins=["*"]
else:
    allow_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    allow_credentials = True
    logger.info(f"CORS origins configurados: {allow_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    max_age=3600,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(TicketingError, ticketing_error_handler)

# Incluir routers de cada servicio
from services.event_management.routes.events import router as events_router
from services.registration.routes.registrations import router as registrations_router
from services.payments.routes.payments import router as payments_router
from services.ticket_validation.routes.validation import router as validation_router
from services.ticket_issuer.routes.tickets import router as tickets_router
from services.roster.routes.roster import router as roster_router

app.include_router(events_router, prefix="/api/v1/events", tags=["events"])
app.include_router(registrations_router, prefix="/api/v1/registrations", tags=["registrations"])
app.include_router(payments_router, prefix="/api/v1/payments", tags=["payments"])
app.include_router(validation_router, prefix="/api/v1/tickets", tags=["check-in"])
app.include_router(tickets_router, prefix="/api/v1/tickets", tags=["tickets"])
app.include_router(roster_router, prefix="/api/v1/roster", tags=["roster"])


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "ok", "service": "vybe-tickets-api"}


@app.get("/ready")
async def ready():
    """Ready check endpoint - verifica conexiones"""
    try:
        async with connection.async_session_maker() as session:
            await session.execute(text("SELECT 1"))

        redis = await get_redis()
        await redis.ping()
    except Exception as e:
        logger.error(f"Ready check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not ready", "error": str(e)})

    return {"status": "ready", "database": "connected", "redis": "connected"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.APP_DEBUG
    )
