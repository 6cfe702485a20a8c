# diy_backend/dependencies.py
from typing import Any, Dict, Iterator

from fastapi import Depends, Request
from sqlmodel import Session

from diy_backend.services.app_settings_service import AppSettingsService
from diy_backend.services.chantier_type_service import ChantierTypeService
from diy_backend.services.llm_service import LLMClient


def get_session(request: Request) -> Iterator[Session]:
    # une session par requête, fermée après la réponse
    with Session(request.app.state.engine) as session:
        yield session


def get_llm(request: Request) -> LLMClient:
    return request.app.state.llm


def get_app_settings(request: Request) -> AppSettingsService:
    return request.app.state.app_settings


def get_chantier_types(request: Request) -> ChantierTypeService:
    return request.app.state.chantier_types


def get_ia_settings(app_settings: AppSettingsService = Depends(get_app_settings)) -> Dict[str, Any]:
    return app_settings.get_default_ia_settings()
