# diy_backend/services/conversation_service.py
"""
Conversations avec l'assistant, une conversation active par chantier.

Chaque conversation garde ses messages, l'expertise active (et son
historique) et un journal de chantier : décisions, problèmes résolus,
points d'attention, préférences du bricoleur et résumé.
"""
import copy
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from sqlmodel import Session, select

from diy_backend.errors import NotFoundError, ValidationError
from diy_backend.models import Chantier, Conversation, utcnow
from diy_backend.schemas import MessageIn, PreferencesBricoleur
from diy_backend.utils import format_date

log = logging.getLogger(__name__)

ACTIVE = "active"
CLOSED = "closed"
MAX_MESSAGES_API = 20
RESUME_THRESHOLD = 25


def _now_iso() -> str:
    return utcnow().isoformat()


def default_journal() -> Dict[str, Any]:
    return {
        "decisions": [],
        "problemes_resolus": [],
        "points_attention": [],
        "preferences_bricoleur": {},
        "resume_conversation": None,
        "derniere_mise_a_jour": _now_iso(),
    }


# ──────────────────────────────────────────────────────────────────────────────
# Lecture
# ──────────────────────────────────────────────────────────────────────────────
def get_conversation(session: Session, conversation_id: int) -> Conversation:
    conv = session.get(Conversation, conversation_id)
    if not conv:
        raise NotFoundError("Conversation introuvable")
    return conv


def get_conversation_by_chantier(session: Session, user_id: str, chantier_id: int) -> Optional[Conversation]:
    return session.exec(
        select(Conversation)
        .where(
            Conversation.user_id == user_id,
            Conversation.chantier_id == chantier_id,
            Conversation.statut == ACTIVE,
        )
        .order_by(Conversation.derniere_activite.desc())
    ).first()


def get_active_conversation(session: Session, user_id: str, type_: str = "general") -> Optional[Conversation]:
    """Conversation active hors chantier du type demandé."""
    return session.exec(
        select(Conversation)
        .where(
            Conversation.user_id == user_id,
            Conversation.type == type_,
            Conversation.chantier_id == None,  # noqa: E711
            Conversation.statut == ACTIVE,
        )
        .order_by(Conversation.derniere_activite.desc())
    ).first()


# ──────────────────────────────────────────────────────────────────────────────
# Cycle de vie
# ──────────────────────────────────────────────────────────────────────────────
def _new(
    user_id: str,
    type_: str,
    chantier_id: Optional[int],
    travail_id: Optional[int],
    titre: Optional[str],
) -> Conversation:
    return Conversation(
        user_id=user_id,
        type=type_,
        chantier_id=chantier_id,
        travail_id=travail_id,
        titre=titre or f"Conversation {type_}",
        journal=default_journal(),
    )


def _check_chantier(session: Session, chantier_id: Optional[int]) -> None:
    if chantier_id is not None and not session.get(Chantier, chantier_id):
        raise NotFoundError("Chantier introuvable")


def create_conversation(
    session: Session,
    user_id: str,
    type_: str = "general",
    chantier_id: Optional[int] = None,
    travail_id: Optional[int] = None,
    titre: Optional[str] = None,
) -> Conversation:
    _check_chantier(session, chantier_id)
    conv = _new(user_id, type_, chantier_id, travail_id, titre)
    session.add(conv)
    session.commit()
    session.refresh(conv)
    log.info("Conversation %s créée (%s, chantier %s)", conv.id, type_, chantier_id)
    return conv


def get_or_create_conversation(
    session: Session,
    user_id: str,
    type_: str = "general",
    chantier_id: Optional[int] = None,
    travail_id: Optional[int] = None,
    titre: Optional[str] = None,
) -> Conversation:
    if chantier_id is not None:
        existing = get_conversation_by_chantier(session, user_id, chantier_id)
    else:
        existing = get_active_conversation(session, user_id, type_)
    if existing:
        return existing
    return create_conversation(session, user_id, type_, chantier_id, travail_id, titre)


def _close(conv: Conversation, satisfaction: Optional[int] = None, feedback: Optional[str] = None) -> None:
    now = utcnow()
    conv.statut = CLOSED
    conv.satisfaction_user = satisfaction
    conv.feedback_user = feedback
    conv.closed_at = now
    conv.updated_at = now


def close_conversation(
    session: Session,
    conversation_id: int,
    satisfaction: Optional[int] = None,
    feedback: Optional[str] = None,
) -> Conversation:
    conv = get_conversation(session, conversation_id)
    _close(conv, satisfaction, feedback)
    session.add(conv)
    session.commit()
    session.refresh(conv)
    log.info("Conversation %s fermée", conversation_id)
    return conv


def start_new_conversation(
    session: Session,
    user_id: str,
    type_: str = "chantier",
    chantier_id: Optional[int] = None,
    travail_id: Optional[int] = None,
) -> Conversation:
    """Ferme la conversation active du chantier et en ouvre une nouvelle (un seul commit)."""
    _check_chantier(session, chantier_id)
    if chantier_id is not None:
        existing = get_conversation_by_chantier(session, user_id, chantier_id)
        if existing:
            _close(existing)
            session.add(existing)
    conv = _new(user_id, type_, chantier_id, travail_id, f"Nouvelle discussion - {format_date(utcnow())}")
    session.add(conv)
    session.commit()
    session.refresh(conv)
    return conv


def delete_conversations_for_chantier(session: Session, chantier_id: int) -> int:
    """Sans commit : appelé avec la suppression du chantier."""
    rows = session.exec(select(Conversation).where(Conversation.chantier_id == chantier_id)).all()
    for row in rows:
        session.delete(row)
    if rows:
        session.flush()
    return len(rows)


# ──────────────────────────────────────────────────────────────────────────────
# Messages et expertise
# ──────────────────────────────────────────────────────────────────────────────
def _active(session: Session, conversation_id: int) -> Conversation:
    conv = get_conversation(session, conversation_id)
    if conv.statut != ACTIVE:
        raise ValidationError("Conversation fermée")
    return conv


def add_message(session: Session, conversation_id: int, message: MessageIn) -> Dict[str, Any]:
    conv = _active(session, conversation_id)
    entry = {"id": uuid.uuid4().hex, "timestamp": _now_iso(), **message.model_dump(exclude_none=True)}
    conv.messages = list(conv.messages or []) + [entry]
    conv.nombre_messages = len(conv.messages)
    conv.derniere_activite = utcnow()
    conv.updated_at = conv.derniere_activite
    session.add(conv)
    session.commit()
    return entry


def update_expertise(
    session: Session,
    conversation_id: int,
    code: str,
    nom: str,
    source: str = "auto",
) -> Conversation:
    conv = _active(session, conversation_id)
    now = _now_iso()
    historique = copy.deepcopy(conv.expertise_historique or [])
    for entry in historique:
        if entry.get("deactivated_at") is None:
            entry["deactivated_at"] = now
    historique.append(
        {"expertise_code": code, "expertise_nom": nom, "activated_at": now, "deactivated_at": None, "trigger": source}
    )
    conv.expertise_historique = historique
    conv.code_expertise_actuelle = code
    conv.nom_expertise_actuelle = nom
    conv.updated_at = utcnow()
    session.add(conv)
    session.commit()
    session.refresh(conv)
    log.info("Conversation %s: expertise %s (%s)", conversation_id, code, source)
    return conv


def get_messages_for_api(messages: List[Dict[str, Any]], max_messages: int = MAX_MESSAGES_API) -> List[Dict[str, Any]]:
    """Fenêtre glissante : les `max_messages` derniers messages."""
    if max_messages <= 0 or len(messages) <= max_messages:
        return list(messages)
    return list(messages[-max_messages:])


def needs_resume(messages_count: int) -> bool:
    return messages_count > RESUME_THRESHOLD


# ──────────────────────────────────────────────────────────────────────────────
# Journal de chantier
# ──────────────────────────────────────────────────────────────────────────────
def _update_journal(
    session: Session,
    conversation_id: int,
    mutate: Callable[[Dict[str, Any]], None],
) -> Dict[str, Any]:
    conv = get_conversation(session, conversation_id)
    # copie profonde : la colonne JSON n'est réécrite que si la valeur change
    journal = copy.deepcopy(conv.journal) if conv.journal else default_journal()
    for key, value in default_journal().items():
        journal.setdefault(key, value)
    mutate(journal)
    journal["derniere_mise_a_jour"] = _now_iso()
    conv.journal = journal
    conv.updated_at = utcnow()
    session.add(conv)
    session.commit()
    return journal


def add_decision(
    session: Session,
    conversation_id: int,
    description: str,
    categorie: str = "autre",
    validee: bool = False,
) -> Dict[str, Any]:
    decision = {
        "id": uuid.uuid4().hex,
        "date": _now_iso(),
        "description": description,
        "categorie": categorie,
        "validee": validee,
    }
    return _update_journal(session, conversation_id, lambda j: j["decisions"].append(decision))


def add_probleme_resolu(
    session: Session,
    conversation_id: int,
    probleme: str,
    solution: str,
    expertise_code: Optional[str] = None,
) -> Dict[str, Any]:
    entry = {
        "id": uuid.uuid4().hex,
        "date": _now_iso(),
        "probleme": probleme,
        "solution": solution,
        "expertise_code": expertise_code,
    }
    return _update_journal(session, conversation_id, lambda j: j["problemes_resolus"].append(entry))


def add_point_attention(session: Session, conversation_id: int, point: str) -> Dict[str, Any]:
    def _add(journal: Dict[str, Any]) -> None:
        if point not in journal["points_attention"]:
            journal["points_attention"].append(point)

    return _update_journal(session, conversation_id, _add)


def update_preferences(session: Session, conversation_id: int, preferences: PreferencesBricoleur) -> Dict[str, Any]:
    """Fusion partielle : seuls les champs fournis remplacent les valeurs existantes."""
    changes = preferences.model_dump(exclude_none=True)
    return _update_journal(session, conversation_id, lambda j: j["preferences_bricoleur"].update(changes))


def update_resume(session: Session, conversation_id: int, resume: str) -> Dict[str, Any]:
    def _set(journal: Dict[str, Any]) -> None:
        journal["resume_conversation"] = resume

    return _update_journal(session, conversation_id, _set)
