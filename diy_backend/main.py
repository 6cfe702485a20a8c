# diy_backend/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from diy_backend.config import settings
from diy_backend.db import create_db_engine, init_db, session_factory
from diy_backend.errors import DiyError
from diy_backend.routers.avatar_config import router as avatar_config_router
from diy_backend.routers.chantier_types import router as chantier_types_router
from diy_backend.routers.chantiers import router as chantiers_router
from diy_backend.routers.conversations import router as conversations_router
from diy_backend.routers.etapes import router as etapes_router
from diy_backend.routers.expertise import router as expertise_router
from diy_backend.routers.notes import router as notes_router
from diy_backend.routers.phasage import router as phasage_router
from diy_backend.routers.settings import router as settings_router
from diy_backend.routers.taches import router as taches_router
from diy_backend.routers.travaux import router as travaux_router
from diy_backend.schemas import fail
from diy_backend.services.app_settings_service import AppSettingsService
from diy_backend.services.chantier_type_service import ChantierTypeService
from diy_backend.services.llm_service import LLMClient

log = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    if not any(getattr(h, "_diy", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._diy = True
        root.addHandler(handler)
    root.setLevel((level or settings.LOG_LEVEL).upper())


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DiyError)
    async def _diy_error(request: Request, exc: DiyError):
        if exc.status_code >= 500:
            log.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=fail(exc.message))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        msg = first.get("msg", "Requête invalide")
        return JSONResponse(status_code=400, content=fail(f"{where}: {msg}" if where else msg))

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content=fail(str(exc.detail)))

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        log.exception("Erreur non gérée sur %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=fail("Erreur interne"))


def create_app(engine: Engine | None = None, llm: LLMClient | None = None) -> FastAPI:
    """
    Construit l'application. L'engine et le client LLM sont créés une fois
    ici (ou injectés par les tests) puis partagés par toutes les requêtes.
    """
    configure_logging()
    engine = engine or create_db_engine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(app.state.engine)
        log.info("Tables vérifiées, API DIY prête")
        yield

    app = FastAPI(title="DIY API", lifespan=lifespan)
    app.state.engine = engine
    app.state.llm = llm or LLMClient()
    app.state.app_settings = AppSettingsService(session_factory(engine))
    app.state.chantier_types = ChantierTypeService(session_factory(engine))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    _register_error_handlers(app)

    @app.get("/")
    def read_root():
        return {"success": True, "data": {"message": "Bienvenue sur l'API DIY"}}

    for router in (
        chantiers_router,
        phasage_router,
        etapes_router,
        taches_router,
        travaux_router,
        expertise_router,
        chantier_types_router,
        settings_router,
        avatar_config_router,
        notes_router,
        conversations_router,
    ):
        app.include_router(router, prefix="/api")
    return app


app = create_app()
