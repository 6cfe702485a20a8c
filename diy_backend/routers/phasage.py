# diy_backend/routers/phasage.py
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlmodel import Session

from diy_backend.dependencies import get_ia_settings, get_llm, get_session
from diy_backend.errors import ValidationError
from diy_backend.schemas import PhasageActionsRequest, PhasageRequest, ok
from diy_backend.services import phasage_service
from diy_backend.services.llm_service import LLMClient
from diy_backend.services.phasage_actions import apply_phasage_content

log = logging.getLogger(__name__)

router = APIRouter(prefix="/phasage", tags=["phasage"])


@router.post("")
def phasage(
    body: PhasageRequest,
    session: Session = Depends(get_session),
    llm: LLMClient = Depends(get_llm),
    ia: Dict[str, Any] = Depends(get_ia_settings),
):
    """
    - generate (défaut) : génère les lots ; en commit ils sont enregistrés,
      en preview ils sont seulement renvoyés.
    - save : enregistre les lots édités côté client.
    - reset : supprime les lots du chantier.
    """
    if body.action == "reset":
        count = phasage_service.delete_lots(session, body.chantier_id)
        return ok({"deleted": count})

    if body.action == "save":
        if not body.lots:
            raise ValidationError("lots requis pour l'action save")
        rows = phasage_service.save_lots(session, body.chantier_id, body.lots, replace=body.replace)
        return ok(rows)

    log.info("Démarrage phasage pour chantier %s (%s)", body.chantier_id, body.mode)
    result = phasage_service.generate_phasage(session, llm, body.chantier_id, body.infos, ia)
    if body.mode == "preview":
        return ok(result.lots)

    phasage_service.save_lots(session, body.chantier_id, result.lots, replace=body.replace)
    return ok(result.lots)


@router.post("/actions")
def phasage_actions(body: PhasageActionsRequest):
    lots, message, applied = apply_phasage_content(body.lots, body.content)
    return ok({"lots": lots, "message": message, "applied": applied})
