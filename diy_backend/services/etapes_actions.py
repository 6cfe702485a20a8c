# diy_backend/services/etapes_actions.py
import logging
from typing import List, Sequence, Tuple

from sqlmodel import Session

from diy_backend.errors import NotFoundError
from diy_backend.schemas import EtapeGeneree, Materiau
from diy_backend.services import etapes_service
from diy_backend.services.actions import (
    Action,
    apply_actions,
    clamp_position,
    extract_action_block,
    find_index,
    merge_unique,
    renumber,
    updated,
)

log = logging.getLogger(__name__)

MARKER = "etapes_action"


def modifier_etape(etapes: List[EtapeGeneree], action: Action) -> List[EtapeGeneree]:
    idx = find_index(etapes, "numero", action.target_id)
    if idx == -1:
        log.warning("modifier_etape: étape %s introuvable", action.target_id)
        return etapes
    out = list(etapes)
    out[idx] = updated(out[idx], action.changes)
    return out


def ajouter_etape(etapes: List[EtapeGeneree], action: Action) -> List[EtapeGeneree]:
    data = {
        "description": "",
        "duree_estimee_minutes": 30,
        "difficulte": "moyen",
        **action.changes,
        "numero": 0,
    }
    out = list(etapes)
    out.insert(clamp_position(action.target_id, len(out)), EtapeGeneree.model_validate(data))
    return renumber(out, "numero")


def supprimer_etape(etapes: List[EtapeGeneree], action: Action) -> List[EtapeGeneree]:
    if find_index(etapes, "numero", action.target_id) == -1:
        log.warning("supprimer_etape: étape %s introuvable", action.target_id)
        return etapes
    return renumber([e for e in etapes if e.numero != action.target_id], "numero")


def deplacer_etape(etapes: List[EtapeGeneree], action: Action) -> List[EtapeGeneree]:
    idx = find_index(etapes, "numero", action.target_id)
    if idx == -1:
        log.warning("deplacer_etape: étape %s introuvable", action.target_id)
        return etapes
    out = list(etapes)
    etape = out.pop(idx)
    out.insert(clamp_position(action.changes.get("nouvelle_position"), len(out)), etape)
    return renumber(out, "numero")


def fusionner_etapes(etapes: List[EtapeGeneree], action: Action) -> List[EtapeGeneree]:
    numeros = action.changes.get("numeros") or []
    sources = [e for e in etapes if e.numero in numeros]
    if len(sources) < 2:
        log.warning("fusionner_etapes: numéros invalides %s", numeros)
        return etapes
    first = find_index(etapes, "numero", sources[0].numero)

    materiaux: List[Materiau] = []
    for e in sources:
        for m in e.materiaux_necessaires:
            if all(x.nom != m.nom for x in materiaux):
                materiaux.append(m)
    fusion = sources[0].model_copy(
        update={
            "titre": action.changes.get("titre") or sources[0].titre,
            "duree_estimee_minutes": int(
                action.changes.get("duree_estimee_minutes")
                or sum(e.duree_estimee_minutes for e in sources)
            ),
            "outils_necessaires": merge_unique([e.outils_necessaires for e in sources]),
            "materiaux_necessaires": materiaux,
        }
    )
    out = [e for e in etapes if e.numero not in numeros]
    out.insert(min(first, len(out)), fusion)
    return renumber(out, "numero")


HANDLERS = {
    "modifier_etape": modifier_etape,
    "ajouter_etape": ajouter_etape,
    "supprimer_etape": supprimer_etape,
    "deplacer_etape": deplacer_etape,
    "fusionner_etapes": fusionner_etapes,
}


def apply_etapes_actions(etapes: Sequence[EtapeGeneree], actions: Sequence[Action]) -> List[EtapeGeneree]:
    return apply_actions(etapes, actions, HANDLERS, MARKER)


def apply_etapes_actions_to_lot(session: Session, lot_id: int, content: str) -> Tuple[List[EtapeGeneree], str, int]:
    """
    Applique les actions du texte aux étapes brouillon du lot et les
    réenregistre en brouillon. Retourne (étapes, texte nettoyé, nb actions).
    """
    extracted = extract_action_block(content, MARKER)
    etapes_service.get_lot(session, lot_id)
    etapes = etapes_service.load_etapes_brouillon(session, lot_id)
    if extracted is None:
        return etapes, content, 0
    if not etapes:
        raise NotFoundError("Aucune étape brouillon pour ce lot")
    result = apply_etapes_actions(etapes, extracted.actions)
    etapes_service.save_etapes_brouillon(session, lot_id, result)
    return result, extracted.clean_content, len(extracted.actions)
