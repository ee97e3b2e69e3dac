import logging
from typing import Optional

from fastapi import FastAPI

from b2b_realtime.api.realtime_router import router as realtime_router
from b2b_realtime.coordinator import RealtimeCoordinator
from b2b_realtime.core.config import settings
from b2b_realtime.core.security import InMemoryTokenStore, normalize_token_value

# --- Configuration du logging ---
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def create_app(coordinator: Optional[RealtimeCoordinator] = None) -> FastAPI:
    """Build the inspection app around one realtime session."""

    if coordinator is None:
        token_store = InMemoryTokenStore(normalize_token_value(settings.REALTIME_ACCESS_TOKEN))
        coordinator = RealtimeCoordinator.from_settings(settings, token_store)

    app = FastAPI(title="B2B Realtime", openapi_url="/api/realtime/openapi.json")
    app.state.realtime = coordinator
    app.include_router(realtime_router, prefix="/api/realtime", tags=["Realtime"])

    @app.on_event("startup")
    async def startup():
        logger.info("Connexion au serveur temps réel %s", settings.realtime_url)
        status = await coordinator.start()
        logger.info("Statut de la connexion temps réel: %s", status.value)

    @app.on_event("shutdown")
    async def shutdown():
        await coordinator.stop(close_connection=True)
        logger.info("Connexion temps réel fermée.")

    return app


app = create_app()
