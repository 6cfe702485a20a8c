# diy_backend/routers/chantiers.py
from fastapi import APIRouter, Depends, status
from sqlmodel import Session, select

from diy_backend.dependencies import get_session
from diy_backend.errors import NotFoundError
from diy_backend.models import Chantier
from diy_backend.schemas import ChantierCreate, ok
from diy_backend.services import conversation_service, notes_service, phasage_service, progression_service
from diy_backend.services.chantier_type_service import detect_chantier_type

router = APIRouter(prefix="/chantiers", tags=["chantiers"])


@router.get("")
def list_chantiers(session: Session = Depends(get_session)):
    items = session.exec(select(Chantier).order_by(Chantier.created_at.desc())).all()
    return ok(items)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_chantier(body: ChantierCreate, session: Session = Depends(get_session)):
    # type détecté depuis le titre/la description s'il n'est pas fourni
    type_code = body.type_code or detect_chantier_type(f"{body.titre} {body.description or ''}")
    chantier = Chantier(
        titre=body.titre.strip(),
        description=body.description,
        type_code=type_code,
        budget_initial=body.budget_initial,
        duree_estimee_heures=body.duree_estimee_heures,
        infos=body.infos,
    )
    session.add(chantier)
    session.commit()
    session.refresh(chantier)
    return ok(chantier)


@router.get("/{chantier_id}")
def get_chantier(chantier_id: int, session: Session = Depends(get_session)):
    chantier = session.get(Chantier, chantier_id)
    if not chantier:
        raise NotFoundError("Chantier introuvable")
    return ok({"chantier": chantier, "lots": phasage_service.load_lots(session, chantier_id)})


@router.delete("/{chantier_id}")
def delete_chantier(chantier_id: int, session: Session = Depends(get_session)):
    """Supprime le chantier et toute sa hiérarchie."""
    phasage_service.delete_lots(session, chantier_id)
    chantier = session.get(Chantier, chantier_id)
    conversation_service.delete_conversations_for_chantier(session, chantier_id)
    session.delete(chantier)
    session.commit()
    return ok({"deleted": chantier_id})


@router.post("/{chantier_id}/recalculate")
def recalculate(chantier_id: int, session: Session = Depends(get_session)):
    chantier = progression_service.recalculate_full_hierarchy(session, chantier_id)
    return ok(chantier)


@router.get("/{chantier_id}/notes/count")
def count_notes(chantier_id: int, session: Session = Depends(get_session)):
    return ok({"chantier_id": chantier_id, "count": notes_service.count_notes_for_chantier(session, chantier_id)})
