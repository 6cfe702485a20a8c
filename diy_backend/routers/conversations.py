# diy_backend/routers/conversations.py
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlmodel import Session

from diy_backend.dependencies import get_ia_settings, get_session
from diy_backend.schemas import (
    ConversationClose,
    ConversationOpen,
    DecisionIn,
    ExpertiseUpdate,
    MessageIn,
    PointAttentionIn,
    PreferencesBricoleur,
    ProblemeResoluIn,
    ResumeIn,
    ok,
)
from diy_backend.services import conversation_service

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.post("")
def open_conversation(body: ConversationOpen, session: Session = Depends(get_session)):
    """Conversation active du contexte (créée au besoin), ou nouvelle si `nouvelle`."""
    if body.nouvelle:
        conv = conversation_service.start_new_conversation(
            session, body.user_id, body.type, body.chantier_id, body.travail_id
        )
    else:
        conv = conversation_service.get_or_create_conversation(
            session, body.user_id, body.type, body.chantier_id, body.travail_id, body.titre
        )
    return ok(conv)


@router.get("/{conversation_id}")
def get_conversation(conversation_id: int, session: Session = Depends(get_session)):
    return ok(conversation_service.get_conversation(session, conversation_id))


@router.get("/{conversation_id}/messages")
def messages_for_api(
    conversation_id: int,
    session: Session = Depends(get_session),
    ia: Dict[str, Any] = Depends(get_ia_settings),
):
    conv = conversation_service.get_conversation(session, conversation_id)
    messages = conv.messages or []
    return ok(
        {
            "messages": conversation_service.get_messages_for_api(messages, ia["history_max_messages"]),
            "total": len(messages),
            "needs_resume": conversation_service.needs_resume(len(messages)),
            "resume": (conv.journal or {}).get("resume_conversation"),
        }
    )


@router.post("/{conversation_id}/messages")
def add_message(conversation_id: int, body: MessageIn, session: Session = Depends(get_session)):
    return ok(conversation_service.add_message(session, conversation_id, body))


@router.patch("/{conversation_id}/expertise")
def update_expertise(conversation_id: int, body: ExpertiseUpdate, session: Session = Depends(get_session)):
    return ok(conversation_service.update_expertise(session, conversation_id, body.code, body.nom, body.source))


@router.post("/{conversation_id}/journal/decisions")
def add_decision(conversation_id: int, body: DecisionIn, session: Session = Depends(get_session)):
    return ok(
        conversation_service.add_decision(session, conversation_id, body.description, body.categorie, body.validee)
    )


@router.post("/{conversation_id}/journal/problemes")
def add_probleme(conversation_id: int, body: ProblemeResoluIn, session: Session = Depends(get_session)):
    return ok(
        conversation_service.add_probleme_resolu(
            session, conversation_id, body.probleme, body.solution, body.expertise_code
        )
    )


@router.post("/{conversation_id}/journal/points-attention")
def add_point_attention(conversation_id: int, body: PointAttentionIn, session: Session = Depends(get_session)):
    return ok(conversation_service.add_point_attention(session, conversation_id, body.point.strip()))


@router.patch("/{conversation_id}/journal/preferences")
def update_preferences(conversation_id: int, body: PreferencesBricoleur, session: Session = Depends(get_session)):
    return ok(conversation_service.update_preferences(session, conversation_id, body))


@router.put("/{conversation_id}/journal/resume")
def update_resume(conversation_id: int, body: ResumeIn, session: Session = Depends(get_session)):
    return ok(conversation_service.update_resume(session, conversation_id, body.resume))


@router.post("/{conversation_id}/close")
def close(
    conversation_id: int,
    body: ConversationClose = ConversationClose(),
    session: Session = Depends(get_session),
):
    return ok(conversation_service.close_conversation(session, conversation_id, body.satisfaction, body.feedback))
