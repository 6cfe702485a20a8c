# diy_backend/routers/taches.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from diy_backend.dependencies import get_ia_settings, get_llm, get_session
from diy_backend.schemas import (
    EtapeRef,
    StatutRequest,
    TachesActionsRequest,
    TachesDraftRequest,
    TachesGenerateRequest,
    TachesValidateRequest,
    ok,
)
from diy_backend.services import progression_service, taches_service
from diy_backend.services.llm_service import LLMClient
from diy_backend.services.taches_actions import apply_taches_actions_to_etape

router = APIRouter(prefix="/taches", tags=["taches"])


@router.post("/generate")
def generate(
    body: TachesGenerateRequest,
    session: Session = Depends(get_session),
    llm: LLMClient = Depends(get_llm),
    ia: Dict[str, Any] = Depends(get_ia_settings),
):
    if body.mode == "commit" and body.taches:
        return ok(taches_service.valider_taches(session, body.etape_id, body.taches))

    result = taches_service.generate_taches(session, llm, body.etape_id, ia)
    if body.mode == "preview":
        return ok(result)
    return ok(taches_service.valider_taches(session, body.etape_id, result.taches))


@router.get("")
def list_taches(
    etape_id: int = Query(gt=0),
    brouillon: Optional[bool] = None,
    session: Session = Depends(get_session),
):
    """brouillon absent : toutes les tâches ; true : brouillons ; false : validées."""
    taches_service.get_etape(session, etape_id)
    if brouillon is None:
        return ok(taches_service.load_all_taches(session, etape_id))
    if brouillon:
        return ok(taches_service.load_taches_brouillon(session, etape_id))
    return ok(taches_service.load_taches_validees(session, etape_id))


@router.post("/draft")
def save_draft(body: TachesDraftRequest, session: Session = Depends(get_session)):
    return ok(taches_service.save_taches_brouillon(session, body.etape_id, body.taches))


@router.post("/validate")
def validate(body: TachesValidateRequest, session: Session = Depends(get_session)):
    return ok(taches_service.valider_taches(session, body.etape_id, body.taches))


@router.post("/actions")
def actions(body: TachesActionsRequest, session: Session = Depends(get_session)):
    taches, message, applied = apply_taches_actions_to_etape(session, body.etape_id, body.content)
    return ok({"taches": taches, "message": message, "applied": applied})


@router.delete("")
def delete(
    etape_id: int = Query(gt=0),
    statut: Optional[str] = None,
    session: Session = Depends(get_session),
):
    taches_service.delete_taches(session, etape_id, statut)
    return ok({"etape_id": etape_id})


@router.delete("/{tache_id}")
def delete_one(tache_id: int, session: Session = Depends(get_session)):
    taches_service.delete_tache_by_id(session, tache_id)
    return ok({"deleted": tache_id})


@router.get("/summary")
def summary(etape_id: int = Query(gt=0), session: Session = Depends(get_session)):
    taches_service.get_etape(session, etape_id)
    taches = [taches_service.to_tache_generee(t) for t in taches_service.load_taches_validees(session, etape_id)]
    return ok(
        {
            "totaux": taches_service.calculer_totaux(taches),
            "outils": taches_service.aggreger_outils(taches),
            "par_statut": taches_service.compter_par_statut(taches),
        }
    )


@router.post("/terminer-toutes")
def terminer_toutes(body: EtapeRef, session: Session = Depends(get_session)):
    count = taches_service.terminer_toutes_taches(session, body.etape_id)
    return ok({"terminees": count, "etape": taches_service.get_etape(session, body.etape_id)})


@router.patch("/{tache_id}/statut")
def update_statut(tache_id: int, body: StatutRequest, session: Session = Depends(get_session)):
    return ok(progression_service.update_statut_and_progression(session, "tache", tache_id, body.statut))


@router.post("/{tache_id}/terminer")
def terminer(tache_id: int, session: Session = Depends(get_session)):
    return ok(taches_service.terminer_tache(session, tache_id))


@router.post("/{tache_id}/reset")
def reset(tache_id: int, session: Session = Depends(get_session)):
    return ok(taches_service.reset_tache(session, tache_id))
