"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional

from fastapi import FastAPI

from wa_simulator.api.health import router as health_router
from wa_simulator.api.simulator import router as simulator_router
from wa_simulator.config import Settings, settings as default_settings
from wa_simulator.core.clock import AsyncioClock, Clock
from wa_simulator.core.conversation.catalog import ScenarioCatalog
from wa_simulator.core.logging import get_logger, setup_logging
from wa_simulator.services.orchestrator import ConversationOrchestrator

setup_logging(default_settings.LOG_LEVEL)
logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    clock_factory: Optional[Callable[[], Clock]] = None,
) -> FastAPI:
    """Build the app. ``clock_factory`` defaults to an asyncio clock on the running loop."""
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup and shutdown events."""
        logger.info("Loading scenario catalog from %s...", settings.SCENARIO_DIR)
        catalog = ScenarioCatalog()
        catalog.load_dir(settings.SCENARIO_DIR)
        app.state.catalog = catalog
        logger.info("Scenario catalog loaded (%d scenarios).", catalog.count())

        logger.info("Initializing conversation orchestrator...")
        clock = clock_factory() if clock_factory else AsyncioClock()
        orchestrator = ConversationOrchestrator.from_settings(clock, settings)
        app.state.clock = clock
        app.state.orchestrator = orchestrator

        if settings.DEFAULT_SCENARIO:
            template = catalog.get(settings.DEFAULT_SCENARIO)
            if template is None:
                logger.warning("Default scenario not found: %s", settings.DEFAULT_SCENARIO)
            else:
                orchestrator.load_conversation(template)
        logger.info("Conversation orchestrator initialized.")

        yield

        logger.info("Shutting down...")
        if not orchestrator.is_destroyed:
            orchestrator.destroy()

    app = FastAPI(title="WhatsApp Simulator", lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(simulator_router)
    return app


app = create_app()
