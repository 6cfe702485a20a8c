# diy_backend/routers/expertise.py
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlmodel import Session

from diy_backend.dependencies import get_ia_settings, get_llm, get_session
from diy_backend.schemas import DetectExpertiseRequest, ExpertiseTransitionRequest, ok
from diy_backend.services import conversation_service, expertise_service
from diy_backend.services.llm_service import LLMClient

log = logging.getLogger(__name__)

router = APIRouter(tags=["expertise"])


@router.post("/expertise/transition")
def transition(
    body: ExpertiseTransitionRequest,
    session: Session = Depends(get_session),
    llm: LLMClient = Depends(get_llm),
):
    """
    Analyse une réponse de l'assistant. Si elle annonce un passage vers un
    expert, renvoie la transition et le prompt expert (créé au besoin) ; avec
    `conversation_id`, l'expert devient l'expertise active de la conversation.
    """
    if body.conversation_id is not None:
        conversation_service.get_conversation(session, body.conversation_id)
    result = expertise_service.detect_expertise_transition(session, llm, body.content, body.contexte_conversation)
    if result is None:
        return ok({"ready_for_expert": False})
    if body.conversation_id is not None:
        prompt = result["prompt"]
        conversation_service.update_expertise(session, body.conversation_id, prompt.code, prompt.nom_affichage, "auto")
    return ok({"ready_for_expert": True, **result})


@router.post("/detect-expertise")
def detect_expertise(
    body: DetectExpertiseRequest,
    llm: LLMClient = Depends(get_llm),
    ia: Dict[str, Any] = Depends(get_ia_settings),
):
    log.info("Détection d'expertise (%d caractères)", len(body.prompt))
    return ok(expertise_service.classify_expertise(llm, body.prompt[: ia["prompt_max_length"]], model=ia["model"]))
