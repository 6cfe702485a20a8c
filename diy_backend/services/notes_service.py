# diy_backend/services/notes_service.py
"""
Notes (pense-bêtes) attachées au chantier, à un lot, une étape ou une tâche.

Les notes sont stockées dans la colonne JSON `notes` de l'élément. Chaque
écriture remplace la liste entière pour que la modification soit détectée.
"""
import logging
import uuid
from typing import Dict, List, Optional, Type

from sqlmodel import Session, SQLModel, select

from diy_backend.errors import NotFoundError, ValidationError
from diy_backend.models import Chantier, Etape, Lot, Tache, utcnow
from diy_backend.schemas import Note, NoteSource

log = logging.getLogger(__name__)

LEVELS: Dict[str, Type[SQLModel]] = {
    "chantier": Chantier,
    "travail": Lot,
    "etape": Etape,
    "tache": Tache,
}

_LABELS = {"chantier": "Chantier", "travail": "Lot", "etape": "Étape", "tache": "Tâche"}


def _get_owner(session: Session, level: str, item_id: int):
    model = LEVELS.get(level)
    if model is None:
        raise ValidationError(f"Niveau de note inconnu: {level}")
    row = session.get(model, item_id)
    if not row:
        raise NotFoundError(f"{_LABELS[level]} introuvable")
    return row


def _notes(row) -> List[Note]:
    return [Note.model_validate(n) for n in (row.notes or [])]


def _save(session: Session, row, notes: List[Note]) -> None:
    row.notes = [n.model_dump(mode="json") for n in notes]
    session.add(row)
    session.commit()


def get_notes(session: Session, level: str, item_id: int) -> List[Note]:
    return _notes(_get_owner(session, level, item_id))


def add_note(
    session: Session,
    level: str,
    item_id: int,
    texte: str,
    source: NoteSource = "assistant_ia",
    message_original: Optional[str] = None,
) -> Note:
    row = _get_owner(session, level, item_id)
    note = Note(
        id=uuid.uuid4().hex,
        texte=texte,
        source=source,
        message_original=message_original,
        created_at=utcnow(),
    )
    _save(session, row, _notes(row) + [note])
    log.info("Note ajoutée à %s %s", level, item_id)
    return note


def update_note(session: Session, level: str, item_id: int, note_id: str, texte: str) -> Note:
    row = _get_owner(session, level, item_id)
    notes = _notes(row)
    for i, n in enumerate(notes):
        if n.id == note_id:
            notes[i] = n.model_copy(update={"texte": texte})
            _save(session, row, notes)
            log.info("Note %s mise à jour (%s %s)", note_id, level, item_id)
            return notes[i]
    raise NotFoundError("Note introuvable")


def delete_note(session: Session, level: str, item_id: int, note_id: str) -> None:
    row = _get_owner(session, level, item_id)
    notes = _notes(row)
    remaining = [n for n in notes if n.id != note_id]
    if len(remaining) == len(notes):
        raise NotFoundError("Note introuvable")
    _save(session, row, remaining)
    log.info("Note %s supprimée (%s %s)", note_id, level, item_id)


def count_notes_for_chantier(session: Session, chantier_id: int) -> int:
    """Notes du chantier et de toute sa hiérarchie (lots, étapes, tâches)."""
    chantier = _get_owner(session, "chantier", chantier_id)
    total = len(chantier.notes or [])
    lots = session.exec(select(Lot).where(Lot.chantier_id == chantier_id)).all()
    total += sum(len(l.notes or []) for l in lots)
    lot_ids = [l.id for l in lots]
    if not lot_ids:
        return total
    etapes = session.exec(select(Etape).where(Etape.lot_id.in_(lot_ids))).all()
    total += sum(len(e.notes or []) for e in etapes)
    etape_ids = [e.id for e in etapes]
    if etape_ids:
        taches = session.exec(select(Tache.notes).where(Tache.etape_id.in_(etape_ids))).all()
        total += sum(len(n or []) for n in taches)
    return total
