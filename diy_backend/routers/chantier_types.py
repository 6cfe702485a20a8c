# diy_backend/routers/chantier_types.py
from fastapi import APIRouter, Depends
from sqlmodel import Session

from diy_backend.dependencies import get_chantier_types, get_session
from diy_backend.errors import NotFoundError
from diy_backend.schemas import DetectTypeRequest, ok
from diy_backend.services import chantier_type_service
from diy_backend.services.chantier_type_service import ChantierTypeService

router = APIRouter(prefix="/chantier-types", tags=["chantier-types"])


@router.get("")
def list_types(types: ChantierTypeService = Depends(get_chantier_types)):
    return ok(types.get_all_chantier_types())


@router.post("/detect")
def detect(
    body: DetectTypeRequest,
    session: Session = Depends(get_session),
    types: ChantierTypeService = Depends(get_chantier_types),
):
    code = chantier_type_service.detect_chantier_type(body.description)
    config = types.get_chantier_type_config(code) if code else None
    return ok(
        {
            "type_code": code,
            "config": config,
            "hors_scope": chantier_type_service.check_hors_scope(session, body.description),
            "alertes": chantier_type_service.check_alertes_critiques(session, body.description),
        }
    )


@router.post("/invalidate")
def invalidate(types: ChantierTypeService = Depends(get_chantier_types)):
    types.invalidate()
    return ok({"invalidated": True})


@router.get("/{code}")
def get_type(code: str, types: ChantierTypeService = Depends(get_chantier_types)):
    config = types.get_chantier_type_config(code)
    if config is None:
        raise NotFoundError(f"Type de chantier {code} introuvable")
    return ok(config)
