# diy_backend/routers/etapes.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from diy_backend.dependencies import get_ia_settings, get_llm, get_session
from diy_backend.schemas import (
    EtapesActionsRequest,
    EtapesDraftRequest,
    EtapesGenerateRequest,
    EtapesValidateRequest,
    StatutRequest,
    ok,
)
from diy_backend.services import etapes_service, progression_service
from diy_backend.services.etapes_actions import apply_etapes_actions_to_lot
from diy_backend.services.llm_service import LLMClient

router = APIRouter(prefix="/etapes", tags=["etapes"])


@router.post("/generate")
def generate(
    body: EtapesGenerateRequest,
    session: Session = Depends(get_session),
    llm: LLMClient = Depends(get_llm),
    ia: Dict[str, Any] = Depends(get_ia_settings),
):
    # commit avec des étapes fournies : validation de la preview, pas de nouvel appel IA
    if body.mode == "commit" and body.etapes:
        return ok(etapes_service.valider_etapes(session, body.lot_id, body.etapes))

    result = etapes_service.generate_etapes(session, llm, body.lot_id, ia)
    if body.mode == "preview":
        return ok(result)
    return ok(etapes_service.valider_etapes(session, body.lot_id, result.etapes))


@router.get("")
def list_etapes(
    lot_id: int = Query(gt=0),
    brouillon: bool = False,
    session: Session = Depends(get_session),
):
    etapes_service.get_lot(session, lot_id)
    if brouillon:
        return ok(etapes_service.load_etapes_brouillon(session, lot_id))
    return ok(etapes_service.load_etapes_validees(session, lot_id))


@router.post("/draft")
def save_draft(body: EtapesDraftRequest, session: Session = Depends(get_session)):
    etapes_service.save_etapes_brouillon(session, body.lot_id, body.etapes)
    return ok(etapes_service.load_etapes_brouillon(session, body.lot_id))


@router.post("/validate")
def validate(body: EtapesValidateRequest, session: Session = Depends(get_session)):
    return ok(etapes_service.valider_etapes(session, body.lot_id, body.etapes))


@router.post("/actions")
def actions(body: EtapesActionsRequest, session: Session = Depends(get_session)):
    etapes, message, applied = apply_etapes_actions_to_lot(session, body.lot_id, body.content)
    return ok({"etapes": etapes, "message": message, "applied": applied})


@router.delete("")
def delete(
    lot_id: int = Query(gt=0),
    statut: Optional[str] = None,
    session: Session = Depends(get_session),
):
    return ok({"deleted": etapes_service.delete_etapes(session, lot_id, statut)})


@router.get("/summary")
def summary(lot_id: int = Query(gt=0), session: Session = Depends(get_session)):
    etapes_service.get_lot(session, lot_id)
    etapes = [etapes_service.to_etape_generee(e) for e in etapes_service.load_etapes_validees(session, lot_id)]
    if not etapes:
        etapes = etapes_service.load_etapes_brouillon(session, lot_id)
    return ok(
        {
            "totaux": etapes_service.calculer_totaux(etapes),
            "materiaux": etapes_service.aggreger_materiaux(etapes),
            "outils": etapes_service.aggreger_outils(etapes),
            "has_brouillon": etapes_service.has_brouillon(session, lot_id),
            "has_validees": etapes_service.has_etapes_validees(session, lot_id),
        }
    )


@router.patch("/{etape_id}/statut")
def update_statut(etape_id: int, body: StatutRequest, session: Session = Depends(get_session)):
    return ok(progression_service.update_statut_and_progression(session, "etape", etape_id, body.statut))
