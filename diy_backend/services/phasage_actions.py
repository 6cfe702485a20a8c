# diy_backend/services/phasage_actions.py
# Actions de l'assistant sur les lots d'un phasage en preview (rien n'est écrit ici)
import logging
from typing import Any, Dict, List, Sequence, Tuple

from diy_backend.schemas import LotGenere
from diy_backend.services.actions import (
    Action,
    apply_actions,
    clamp_position,
    extract_action_block,
    find_index,
    renumber,
    updated,
)
from diy_backend.utils import round_half_up

log = logging.getLogger(__name__)

MARKER = "phasage_action"


def _nouveau_lot(data: Dict[str, Any]) -> LotGenere:
    return LotGenere.model_validate(
        {
            "description": "",
            "code_expertise": "generaliste",
            "niveau_requis": "intermediaire",
            "duree_estimee_heures": 0,
            "cout_estime": 0,
            **data,
            "ordre": 0,
            "prerequis_stricts": [],
            "dependances_type": "sequentiel",
        }
    )


def modifier_lot(lots: List[LotGenere], action: Action) -> List[LotGenere]:
    idx = find_index(lots, "ordre", action.target_id)
    if idx == -1:
        log.warning("modifier_lot: lot %s introuvable", action.target_id)
        return lots
    out = list(lots)
    out[idx] = updated(out[idx], action.changes)
    return out


def ajouter_lot(lots: List[LotGenere], action: Action) -> List[LotGenere]:
    out = list(lots)
    out.insert(clamp_position(action.target_id, len(out)), _nouveau_lot(action.changes))
    return renumber(out, "ordre")


def supprimer_lot(lots: List[LotGenere], action: Action) -> List[LotGenere]:
    if find_index(lots, "ordre", action.target_id) == -1:
        log.warning("supprimer_lot: lot %s introuvable", action.target_id)
        return lots
    return renumber([l for l in lots if l.ordre != action.target_id], "ordre")


def deplacer_lot(lots: List[LotGenere], action: Action) -> List[LotGenere]:
    idx = find_index(lots, "ordre", action.target_id)
    if idx == -1:
        log.warning("deplacer_lot: lot %s introuvable", action.target_id)
        return lots
    out = list(lots)
    lot = out.pop(idx)
    out.insert(clamp_position(action.changes.get("nouvelle_position"), len(out)), lot)
    return renumber(out, "ordre")


def fusionner_lots(lots: List[LotGenere], action: Action) -> List[LotGenere]:
    ordres = action.changes.get("ordres") or []
    sources = [l for l in lots if l.ordre in ordres]
    if len(sources) < 2:
        log.warning("fusionner_lots: ordres invalides %s", ordres)
        return lots
    first = find_index(lots, "ordre", sources[0].ordre)
    c = action.changes
    fusion = sources[0].model_copy(
        update={
            "titre": c.get("titre") or sources[0].titre,
            "description": c.get("description") or "",
            "cout_estime": float(c.get("cout_estime") or sum(l.cout_estime for l in sources)),
            "duree_estimee_heures": float(
                c.get("duree_estimee_heures") or sum(l.duree_estimee_heures for l in sources)
            ),
        }
    )
    out = [l for l in lots if l.ordre not in ordres]
    out.insert(min(first, len(out)), fusion)
    return renumber(out, "ordre")


def decouper_lot(lots: List[LotGenere], action: Action) -> List[LotGenere]:
    idx = find_index(lots, "ordre", action.target_id)
    nouveaux = action.changes.get("nouveaux_lots") or []
    if idx == -1 or not isinstance(nouveaux, list) or not nouveaux:
        log.warning("decouper_lot: lot %s ou découpage invalide", action.target_id)
        return lots
    out = list(lots)
    out[idx:idx + 1] = [_nouveau_lot(nl) for nl in nouveaux]
    return renumber(out, "ordre")


def ajuster_budget_global(lots: List[LotGenere], action: Action) -> List[LotGenere]:
    cible = action.changes.get("budget_cible")
    actuel = sum(l.cout_estime or 0 for l in lots)
    if cible is None or actuel <= 0:
        log.warning("ajuster_budget_global: budget cible %s / actuel %s", cible, actuel)
        return lots
    ratio = float(cible) / actuel
    return [l.model_copy(update={"cout_estime": float(round_half_up(l.cout_estime * ratio))}) for l in lots]


HANDLERS = {
    "modifier_lot": modifier_lot,
    "ajouter_lot": ajouter_lot,
    "supprimer_lot": supprimer_lot,
    "deplacer_lot": deplacer_lot,
    "fusionner_lots": fusionner_lots,
    "decouper_lot": decouper_lot,
    "ajuster_budget_global": ajuster_budget_global,
}


def apply_phasage_actions(lots: Sequence[LotGenere], actions: Sequence[Action]) -> List[LotGenere]:
    return apply_actions(lots, actions, HANDLERS, MARKER)


def apply_phasage_content(lots: Sequence[LotGenere], content: str) -> Tuple[List[LotGenere], str, int]:
    extracted = extract_action_block(content, MARKER)
    if extracted is None:
        return list(lots), content, 0
    return apply_phasage_actions(lots, extracted.actions), extracted.clean_content, len(extracted.actions)
