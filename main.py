import asyncio
import inspect
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from openai import AsyncOpenAI

from dal.session_dal import SessionDAL
from models.session_models import utc_now
from routes.realtime_ws import router as realtime_router
from routes.session_route import router as session_router
from services.openai.story_generator import StoryElementGenerator
from services.realtime.ai_coauthor import AICoAuthor, StoryGenerator
from services.realtime.broadcast_gateway import BroadcastGateway
from services.realtime.invite_tokens import InviteTokenStore
from services.realtime.session_store import SessionRegistry
from services.session_cache import SessionCache
from utils.app_config import AppConfig
from utils.database_cleaner import DatabaseCleaner
from utils.database_init import AsyncDatabaseInitializer

load_dotenv()  # Load environment variables from .env file if present

logger = logging.getLogger(__name__)


def _build_openai_client(config: AppConfig) -> Optional[AsyncOpenAI]:
    if not config.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; the AI co-author will report generation errors")
        return None
    try:
        return AsyncOpenAI(api_key=config.openai_api_key)
    except Exception as exc:
        raise RuntimeError("Failed to initialize OpenAI Async client") from exc


async def _close_client(client) -> None:
    """Gracefully close the OpenAI client if it exposes a close/aclose method."""
    aclose = getattr(client, "aclose", None) or getattr(client, "close", None)
    if aclose is None:
        return
    try:
        if inspect.iscoroutinefunction(aclose):
            await aclose()
        else:
            result = aclose()
            if inspect.isawaitable(result):
                await result
    except Exception:
        # Ignore shutdown errors to avoid masking more important issues.
        logger.debug("Ignoring error while closing OpenAI client", exc_info=True)


def create_app(config: Optional[AppConfig] = None, generator: Optional[StoryGenerator] = None) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    Args:
        config: Settings; read from the environment when omitted.
        generator: Story generator override (the OpenAI-backed one by default).
    """
    config = config or AppConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan manager to initialize and attach to `app.state`:
          - the session registry, invite store, session cache and gateway
          - the OpenAI async client used by the AI co-author
          - the SQLite repository when DATABASE_DIR is configured
        """
        registry = SessionRegistry(idle_timeout=timedelta(seconds=config.session_idle_timeout))
        invites = InviteTokenStore(
            ttl=timedelta(seconds=config.invite_token_ttl) if config.invite_token_ttl else None,
            max_per_session=config.invite_max_per_session or None,
        )
        cache = SessionCache(ttl_seconds=config.cache_ttl)

        openai_client = None
        story_generator = generator
        if story_generator is None:
            openai_client = _build_openai_client(config)
            story_generator = StoryElementGenerator(openai_client, model=config.openai_model)
        coauthor = AICoAuthor(
            story_generator,
            trigger_every=config.ai_trigger_every,
            context_segments=config.ai_context_segments,
        )

        repository = None
        background = []
        if config.database_dir:
            db_initializer = AsyncDatabaseInitializer(config.database_dir, reset=config.database_reset)
            await db_initializer.ensure_database()
            repository = SessionDAL(db_initializer)
            since = utc_now() - timedelta(seconds=config.session_idle_timeout)
            for session in await repository.load_active_sessions(since):
                registry.restore(session)
            logger.info("Restored %d session(s) from %s", len(registry), db_initializer.db_path)
            cleaner = DatabaseCleaner(db_initializer, retention_seconds=config.session_idle_timeout)
            background.append(asyncio.create_task(cleaner.run_periodic_cleanup(config.session_sweep_interval)))
            app.state.db_initializer = db_initializer

        gateway = BroadcastGateway(
            registry,
            invites,
            coauthor=coauthor,
            cache=cache,
            repository=repository,
            invite_base_url=config.invite_base_url,
        )
        background.append(asyncio.create_task(registry.run_periodic_eviction(config.session_sweep_interval)))

        app.state.config = config
        app.state.session_registry = registry
        app.state.invite_store = invites
        app.state.session_cache = cache
        app.state.gateway = gateway
        app.state.openai_client = openai_client

        try:
            yield
        finally:
            for task in background:
                task.cancel()
            await asyncio.gather(*background, return_exceptions=True)
            await gateway.shutdown()
            if openai_client is not None:
                await _close_client(openai_client)

    app = FastAPI(lifespan=lifespan)

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check reporting live sessions and whether AI and persistence are enabled.
        """
        state = request.app.state
        return {
            "ok": True,
            "sessions": len(state.session_registry),
            "ai_available": getattr(state, "openai_client", None) is not None or generator is not None,
            "persistence": hasattr(state, "db_initializer"),
        }

    # Register application routers
    app.include_router(realtime_router)
    app.include_router(session_router)

    return app


app = create_app()
