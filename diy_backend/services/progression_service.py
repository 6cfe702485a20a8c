# diy_backend/services/progression_service.py
"""
Progression hiérarchique tâche → étape → lot → chantier.

Chaque changement de statut recalcule tous les ancêtres dans la même
transaction, avant la réponse HTTP. Les éléments en brouillon ne comptent pas.

Pondération : chaque enfant pèse autant que ses frères.
  - étape    = % de tâches terminées (sans tâche : 100 si l'étape est terminée)
  - lot      = moyenne des progressions de ses étapes
  - chantier = moyenne des progressions de ses lots
"""
import logging
from typing import List, Literal, Optional

from sqlmodel import Session, select

from diy_backend.errors import NotFoundError, ValidationError
from diy_backend.models import Chantier, Etape, Lot, Tache, utcnow
from diy_backend.utils import round_half_up

log = logging.getLogger(__name__)

Level = Literal["tache", "etape", "lot"]

_TERMINE = {"termine", "terminé", "terminee", "terminée"}
BROUILLON = "brouillon"


def is_termine(statut: Optional[str]) -> bool:
    return bool(statut) and statut.strip().lower() in _TERMINE


def _mean(values: List[int]) -> int:
    if not values:
        return 0
    return round_half_up(sum(values) / len(values))


def _statut_parent(progression: int, actuel: str, repli: str) -> str:
    if progression == 100:
        return "termine"
    if progression > 0:
        return "en_cours"
    # retombé à 0 (étapes remplacées ou supprimées)
    return repli if is_termine(actuel) else actuel


# ──────────────────────────────────────────────────────────────────────────────
# Calculs (sans commit)
# ──────────────────────────────────────────────────────────────────────────────
def _taches_actives(session: Session, etape_id: int) -> List[Tache]:
    return session.exec(
        select(Tache).where(Tache.etape_id == etape_id, Tache.statut != BROUILLON)
    ).all()


def _etapes_actives(session: Session, lot_id: int) -> List[Etape]:
    return session.exec(
        select(Etape).where(Etape.lot_id == lot_id, Etape.statut != BROUILLON)
    ).all()


def compute_etape_progression(session: Session, etape: Etape) -> int:
    taches = _taches_actives(session, etape.id)
    if not taches:
        return 100 if is_termine(etape.statut) else 0
    done = sum(1 for t in taches if is_termine(t.statut))
    return round_half_up(100 * done / len(taches))


def _statut_etape(progression: int, actuel: str) -> str:
    """Statut d'une étape qui a des tâches, déduit de sa progression."""
    if progression == 100:
        return "terminée"
    if progression > 0:
        return "en_cours"
    return "à_venir" if is_termine(actuel) else actuel


def _recompute_etape(session: Session, etape: Etape) -> None:
    has_taches = bool(_taches_actives(session, etape.id))
    etape.progression = compute_etape_progression(session, etape)
    if has_taches and etape.statut != BROUILLON:
        etape.statut = _statut_etape(etape.progression, etape.statut)
    etape.updated_at = utcnow()
    session.add(etape)


def _check_statut_etape(session: Session, etape: Etape, statut: str) -> None:
    """Refuse un statut contredit par les tâches actives de l'étape."""
    if statut == BROUILLON or not _taches_actives(session, etape.id):
        return
    attendu = _statut_etape(compute_etape_progression(session, etape), statut)
    if attendu != statut and not (is_termine(attendu) and is_termine(statut)):
        raise ValidationError(
            f"Statut {statut} incompatible avec les tâches de l'étape (statut attendu : {attendu})"
        )


def _recompute_lot(session: Session, lot: Lot) -> None:
    lot.progression = _mean([e.progression for e in _etapes_actives(session, lot.id)])
    lot.statut = _statut_parent(lot.progression, lot.statut, "a_venir")
    lot.updated_at = utcnow()
    session.add(lot)


def _recompute_chantier(session: Session, chantier: Chantier) -> None:
    lots = session.exec(select(Lot).where(Lot.chantier_id == chantier.id)).all()
    chantier.progression = _mean([l.progression for l in lots])
    chantier.statut = _statut_parent(chantier.progression, chantier.statut, "en_cours")
    chantier.updated_at = utcnow()
    session.add(chantier)


def _propagate_from_etape(session: Session, etape: Etape) -> None:
    _recompute_etape(session, etape)
    lot = session.get(Lot, etape.lot_id)
    if lot:
        _propagate_from_lot(session, lot)


def _propagate_from_lot(session: Session, lot: Lot) -> None:
    _recompute_lot(session, lot)
    chantier = session.get(Chantier, lot.chantier_id)
    if chantier:
        _recompute_chantier(session, chantier)


# ──────────────────────────────────────────────────────────────────────────────
# API publique (commit unique)
# ──────────────────────────────────────────────────────────────────────────────
def update_etape_progression(session: Session, etape_id: int, commit: bool = True) -> Etape:
    etape = session.get(Etape, etape_id)
    if not etape:
        raise NotFoundError("Étape introuvable")
    _propagate_from_etape(session, etape)
    if commit:
        session.commit()
        session.refresh(etape)
    log.info("Progression étape %s: %s%%", etape_id, etape.progression)
    return etape


def update_lot_progression(session: Session, lot_id: int, commit: bool = True) -> Lot:
    lot = session.get(Lot, lot_id)
    if not lot:
        raise NotFoundError("Lot introuvable")
    _propagate_from_lot(session, lot)
    if commit:
        session.commit()
        session.refresh(lot)
    return lot


def update_chantier_progression(session: Session, chantier_id: int, commit: bool = True) -> Chantier:
    chantier = session.get(Chantier, chantier_id)
    if not chantier:
        raise NotFoundError("Chantier introuvable")
    _recompute_chantier(session, chantier)
    if commit:
        session.commit()
        session.refresh(chantier)
    return chantier


def update_statut_and_progression(session: Session, level: Level, item_id: int, statut: str):
    """
    Change le statut d'une tâche, d'une étape ou d'un lot puis recalcule
    tous ses ancêtres. Retourne l'élément mis à jour.
    """
    if not statut:
        raise ValidationError("Statut requis")

    if level == "tache":
        tache = session.get(Tache, item_id)
        if not tache:
            raise NotFoundError("Tâche introuvable")
        tache.statut = statut
        tache.completed_at = utcnow() if is_termine(statut) else None
        tache.updated_at = utcnow()
        session.add(tache)
        etape = session.get(Etape, tache.etape_id)
        if etape:
            _propagate_from_etape(session, etape)
        item = tache
    elif level == "etape":
        etape = session.get(Etape, item_id)
        if not etape:
            raise NotFoundError("Étape introuvable")
        _check_statut_etape(session, etape, statut)
        etape.statut = statut
        etape.updated_at = utcnow()
        session.add(etape)
        # une étape sans tâche suit directement son statut
        _propagate_from_etape(session, etape)
        item = etape
    elif level == "lot":
        lot = session.get(Lot, item_id)
        if not lot:
            raise NotFoundError("Lot introuvable")
        lot.statut = statut
        lot.updated_at = utcnow()
        session.add(lot)
        chantier = session.get(Chantier, lot.chantier_id)
        if chantier:
            _recompute_chantier(session, chantier)
        item = lot
    else:
        raise ValidationError(f"Niveau inconnu: {level}")

    session.commit()
    session.refresh(item)
    log.info("Statut %s %s -> %s", level, item_id, statut)
    return item


def recalculate_full_hierarchy(session: Session, chantier_id: int) -> Chantier:
    chantier = session.get(Chantier, chantier_id)
    if not chantier:
        raise NotFoundError("Chantier introuvable")
    lots = session.exec(select(Lot).where(Lot.chantier_id == chantier_id)).all()
    for lot in lots:
        for etape in _etapes_actives(session, lot.id):
            _recompute_etape(session, etape)
        _recompute_lot(session, lot)
    _recompute_chantier(session, chantier)
    session.commit()
    session.refresh(chantier)
    log.info("Hiérarchie recalculée pour chantier %s: %s%%", chantier_id, chantier.progression)
    return chantier
