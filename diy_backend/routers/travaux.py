# diy_backend/routers/travaux.py
# Un "travail" est un lot du phasage (table travaux)
from fastapi import APIRouter, Depends
from sqlmodel import Session

from diy_backend.dependencies import get_session
from diy_backend.errors import NotFoundError
from diy_backend.models import Lot
from diy_backend.schemas import StatutRequest, ok
from diy_backend.services import progression_service

router = APIRouter(prefix="/travaux", tags=["travaux"])


@router.get("/{lot_id}")
def get_travail(lot_id: int, session: Session = Depends(get_session)):
    lot = session.get(Lot, lot_id)
    if not lot:
        raise NotFoundError("Lot introuvable")
    return ok(lot)


@router.patch("/{lot_id}/statut")
def update_statut(lot_id: int, body: StatutRequest, session: Session = Depends(get_session)):
    return ok(progression_service.update_statut_and_progression(session, "lot", lot_id, body.statut))
