import logging

from fastapi import FastAPI

from .clock import Clock, utc_now
from .config import DATABASE_URL
from .database import init_schema, make_engine, make_session_factory
from .logging_config import configure_logging
from .repo import SqlRepository
from .routes import include_modular_routers
from .services.events import SqlEventSink
from .services.messages import SqlMessageLog
from .services.registry import Services, build_services

logger = logging.getLogger(__name__)


def build_sql_services(database_url: str = DATABASE_URL, clock: Clock = utc_now) -> Services:
    engine = make_engine(database_url)
    init_schema(engine)
    session_factory = make_session_factory(engine)
    logger.info(f"[startup] using database {engine.url.render_as_string(hide_password=True)}")
    return build_services(
        SqlRepository(session_factory),
        SqlMessageLog(session_factory),
        SqlEventSink(session_factory),
        clock=clock,
    )


def create_app(services: Services | None = None) -> FastAPI:
    configure_logging()
    app = FastAPI(title="Lonetown Match API")
    app.state.services = services if services is not None else build_sql_services()
    include_modular_routers(app)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
