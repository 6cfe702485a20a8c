# diy_backend/routers/notes.py
from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from diy_backend.dependencies import get_session
from diy_backend.schemas import NoteCreate, NoteLevel, NoteUpdate, ok
from diy_backend.services import notes_service

router = APIRouter(prefix="/notes", tags=["notes"])


@router.get("/{level}/{item_id}")
def list_notes(level: NoteLevel, item_id: int, session: Session = Depends(get_session)):
    return ok(notes_service.get_notes(session, level, item_id))


@router.post("/{level}/{item_id}", status_code=status.HTTP_201_CREATED)
def add_note(level: NoteLevel, item_id: int, body: NoteCreate, session: Session = Depends(get_session)):
    note = notes_service.add_note(session, level, item_id, body.texte, body.source, body.message_original)
    return ok(note)


@router.patch("/{level}/{item_id}/{note_id}")
def update_note(
    level: NoteLevel,
    item_id: int,
    note_id: str,
    body: NoteUpdate,
    session: Session = Depends(get_session),
):
    return ok(notes_service.update_note(session, level, item_id, note_id, body.texte.strip()))


@router.delete("/{level}/{item_id}/{note_id}")
def delete_note(level: NoteLevel, item_id: int, note_id: str, session: Session = Depends(get_session)):
    notes_service.delete_note(session, level, item_id, note_id)
    return ok({"deleted": note_id})
