# diy_backend/services/taches_actions.py
import logging
from typing import List, Sequence, Tuple

from sqlmodel import Session

from diy_backend.errors import NotFoundError
from diy_backend.schemas import TacheGeneree
from diy_backend.services import taches_service
from diy_backend.services.actions import (
    Action,
    apply_actions,
    clamp_position,
    extract_action_block,
    find_index,
    renumber,
    updated,
)

log = logging.getLogger(__name__)

MARKER = "taches_action"


def _missing(name: str, action: Action, taches: List[TacheGeneree]) -> List[TacheGeneree]:
    log.warning("%s: tâche %s introuvable", name, action.target_id)
    return taches


def ajouter_tache(taches: List[TacheGeneree], action: Action) -> List[TacheGeneree]:
    data = {
        "duree_estimee_minutes": 10,
        "est_critique": False,
        "statut": taches_service.A_FAIRE,
        **action.changes,
        "id": None,
        "numero": 0,
    }
    out = list(taches)
    out.insert(clamp_position(action.target_id, len(out)), TacheGeneree.model_validate(data))
    return renumber(out, "numero")


def supprimer_tache(taches: List[TacheGeneree], action: Action) -> List[TacheGeneree]:
    if find_index(taches, "numero", action.target_id) == -1:
        return _missing("supprimer_tache", action, taches)
    return renumber([t for t in taches if t.numero != action.target_id], "numero")


def modifier_tache(taches: List[TacheGeneree], action: Action) -> List[TacheGeneree]:
    idx = find_index(taches, "numero", action.target_id)
    if idx == -1:
        return _missing("modifier_tache", action, taches)
    out = list(taches)
    out[idx] = updated(out[idx], action.changes)
    return out


def deplacer_tache(taches: List[TacheGeneree], action: Action) -> List[TacheGeneree]:
    idx = find_index(taches, "numero", action.target_id)
    if idx == -1:
        return _missing("deplacer_tache", action, taches)
    out = list(taches)
    tache = out.pop(idx)
    out.insert(clamp_position(action.changes.get("nouvelle_position"), len(out)), tache)
    return renumber(out, "numero")


def _set_statut(taches: List[TacheGeneree], action: Action, statut: str) -> List[TacheGeneree]:
    idx = find_index(taches, "numero", action.target_id)
    if idx == -1:
        return _missing(action.type, action, taches)
    out = list(taches)
    out[idx] = out[idx].model_copy(update={"statut": statut})
    return out


def cocher_tache(taches: List[TacheGeneree], action: Action) -> List[TacheGeneree]:
    return _set_statut(taches, action, taches_service.TERMINEE)


def decocher_tache(taches: List[TacheGeneree], action: Action) -> List[TacheGeneree]:
    return _set_statut(taches, action, taches_service.A_FAIRE)


HANDLERS = {
    "ajouter_tache": ajouter_tache,
    "supprimer_tache": supprimer_tache,
    "modifier_tache": modifier_tache,
    "deplacer_tache": deplacer_tache,
    "cocher_tache": cocher_tache,
    "decocher_tache": decocher_tache,
}


def apply_taches_actions(taches: Sequence[TacheGeneree], actions: Sequence[Action]) -> List[TacheGeneree]:
    return apply_actions(taches, actions, HANDLERS, MARKER)


def apply_taches_actions_to_etape(session: Session, etape_id: int, content: str) -> Tuple[List[TacheGeneree], str, int]:
    """
    Applique les actions du texte aux tâches validées de l'étape. Les lignes
    existantes sont mises à jour sur place et la progression est recalculée.
    """
    extracted = extract_action_block(content, MARKER)
    taches_service.get_etape(session, etape_id)
    taches = [taches_service.to_tache_generee(t) for t in taches_service.load_taches_validees(session, etape_id)]
    if extracted is None:
        return taches, content, 0
    if not taches:
        raise NotFoundError("Aucune tâche validée pour cette étape")
    result = apply_taches_actions(taches, extracted.actions)
    rows = taches_service.sync_taches(session, etape_id, result)
    return [taches_service.to_tache_generee(t) for t in rows], extracted.clean_content, len(extracted.actions)
