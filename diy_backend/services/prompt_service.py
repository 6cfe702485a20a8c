# diy_backend/services/prompt_service.py
import logging
from typing import Dict, Optional

from sqlmodel import Session, select

from diy_backend.models import PromptLibrary

log = logging.getLogger(__name__)


def get_prompt(session: Session, code: str) -> Optional[PromptLibrary]:
    return session.exec(
        select(PromptLibrary).where(PromptLibrary.code == code, PromptLibrary.est_actif == True)  # noqa: E712
    ).first()


def load_prompt_text(session: Session, code: str, default: str) -> str:
    """Texte du prompt `code` dans prompts_library, sinon le prompt embarqué."""
    row = get_prompt(session, code)
    if row and row.prompt_text:
        return row.prompt_text
    log.info("Prompt %s absent de prompts_library, prompt par défaut utilisé", code)
    return default


def fill_template(template: str, values: Dict[str, str]) -> str:
    """Remplace les marqueurs {{CLE}} du template."""
    out = template
    for key, value in values.items():
        out = out.replace("{{" + key + "}}", value or "")
    return out
