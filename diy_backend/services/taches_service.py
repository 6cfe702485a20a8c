# diy_backend/services/taches_service.py
"""Génération et suivi des tâches d'une étape (même cycle que les étapes)."""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from diy_backend.errors import NotFoundError, UpstreamError
from diy_backend.models import Chantier, Etape, Lot, Tache, utcnow
from diy_backend.schemas import ResultatTaches, TacheGeneree
from diy_backend.services.llm_service import LLMClient, generate_json
from diy_backend.services.progression_service import is_termine, update_etape_progression
from diy_backend.services.prompt_service import fill_template, load_prompt_text
from diy_backend.utils import round_half_up

log = logging.getLogger(__name__)

PROMPT_CODE = "system_taches"
BROUILLON = "brouillon"
A_FAIRE = "à_faire"
TERMINEE = "terminée"

DEFAULT_TACHES_PROMPT = """Tu es un expert en bricolage et rénovation. Tu génères des tâches détaillées pour une étape de travaux.

CONTEXTE :
{{ETAPE_CONTEXT}}

RÈGLES :
1. Décompose l'étape en tâches concrètes et actionnables
2. Chaque tâche = 1 action précise (5-15 minutes généralement)
3. Utilise des verbes d'action : "Couper", "Visser", "Appliquer", "Vérifier"
4. Marque comme "est_critique: true" les tâches de sécurité ou points de contrôle importants
5. Adapte le niveau de détail à la difficulté de l'étape
6. Inclus les outils nécessaires si différents de ceux de l'étape
7. Ajoute des conseils pro pour les tâches délicates

FORMAT DE RÉPONSE (JSON strict) :
{
  "taches": [
    {
      "numero": 1,
      "titre": "Titre court et actionnable",
      "description": "Description détaillée de la tâche",
      "duree_estimee_minutes": 10,
      "est_critique": false,
      "outils_necessaires": ["outil1", "outil2"],
      "conseils_pro": "Conseil optionnel"
    }
  ]
}

IMPORTANT :
- Réponds UNIQUEMENT avec le JSON, pas de texte avant ou après
- Génère entre 3 et 10 tâches selon la complexité de l'étape
- La somme des durées doit être cohérente avec la durée de l'étape"""


def get_etape(session: Session, etape_id: int) -> Etape:
    etape = session.get(Etape, etape_id)
    if not etape:
        raise NotFoundError("Étape introuvable")
    return etape


def build_etape_context(chantier: Chantier, lot: Lot, etape: Etape) -> str:
    meta = chantier.infos or {}
    head = f"CHANTIER : {chantier.titre}"
    if meta.get("surface_m2"):
        head += f" ({meta['surface_m2']} m²)"
    lines = [
        head,
        "",
        f"LOT : {lot.titre}",
        f"   {lot.description or ''}",
        f"   Expertise : {lot.code_expertise or 'général'}",
        "",
        "ÉTAPE À DÉCOMPOSER :",
        f"   Numéro : {etape.numero}",
        f"   Titre : {etape.titre}",
        f"   Description : {etape.description or 'Non spécifiée'}",
        f"   Durée estimée : {etape.duree_estimee_minutes} minutes",
        f"   Difficulté : {etape.difficulte or 'moyen'}",
    ]
    if etape.outils_necessaires:
        lines.append(f"   Outils : {', '.join(etape.outils_necessaires)}")
    if etape.materiaux_necessaires:
        mats = ", ".join(
            m if isinstance(m, str) else f"{m.get('nom')} ({m.get('quantite')} {m.get('unite') or ''})".strip()
            for m in etape.materiaux_necessaires
        )
        lines.append(f"   Matériaux : {mats}")
    if etape.precautions:
        lines.append(f"   Précautions : {etape.precautions}")
    if etape.conseils_pro:
        lines.append(f"   Conseils : {etape.conseils_pro}")
    if meta.get("competences_ok"):
        lines += ["", "BRICOLEUR :", f"   Compétences maîtrisées : {', '.join(meta['competences_ok'])}"]
    if meta.get("competences_faibles"):
        lines.append(f"   Compétences faibles : {', '.join(meta['competences_faibles'])}")
    return "\n".join(lines)


def normalize_taches(data: Dict[str, Any]) -> ResultatTaches:
    """Valeurs par défaut appliquées aux tâches renvoyées par le modèle."""
    raw = data.get("taches")
    if not isinstance(raw, list):
        raise ValueError("Liste 'taches' absente")
    taches = []
    for i, t in enumerate(raw):
        if not isinstance(t, dict):
            continue
        outils = t.get("outils_necessaires")
        taches.append(
            {
                "numero": t.get("numero") or i + 1,
                "titre": t.get("titre") or f"Tâche {i + 1}",
                "description": t.get("description") or None,
                "duree_estimee_minutes": t.get("duree_estimee_minutes") or 10,
                "est_critique": t.get("est_critique") is True,
                "outils_necessaires": outils if isinstance(outils, list) else [],
                "conseils_pro": t.get("conseils_pro") or None,
            }
        )
    # ResultatTaches refuse une liste vide
    return ResultatTaches.model_validate({"taches": taches})


def generate_taches(
    session: Session,
    llm: LLMClient,
    etape_id: int,
    ia_settings: Optional[Dict[str, Any]] = None,
) -> ResultatTaches:
    etape = get_etape(session, etape_id)
    lot = session.get(Lot, etape.lot_id)
    chantier = session.get(Chantier, lot.chantier_id) if lot else None
    if not lot or not chantier:
        raise NotFoundError("Lot ou chantier introuvable")

    prompt = fill_template(
        load_prompt_text(session, PROMPT_CODE, DEFAULT_TACHES_PROMPT),
        {"ETAPE_CONTEXT": build_etape_context(chantier, lot, etape)},
    )
    ia = ia_settings or {}
    result = generate_json(
        llm,
        prompt,
        "Génère les tâches de cette étape.",
        normalize_taches,
        model=ia.get("model"),
        temperature=ia.get("temperature", 0.5),
        max_tokens=ia.get("max_tokens", 2000),
        label="taches",
    )
    log.info("Tâches générées pour étape %s: %d", etape_id, len(result.taches))
    return result


# ──────────────────────────────────────────────────────────────────────────────
# Lecture
# ──────────────────────────────────────────────────────────────────────────────
def to_tache_generee(t: Tache) -> TacheGeneree:
    return TacheGeneree(
        id=t.id,
        numero=t.numero,
        titre=t.titre,
        description=t.description,
        duree_estimee_minutes=t.duree_estimee_minutes or 10,
        est_critique=bool(t.est_critique),
        outils_necessaires=t.outils_necessaires or [],
        conseils_pro=t.conseils_pro,
        statut=t.statut,
    )


def _select(etape_id: int):
    return select(Tache).where(Tache.etape_id == etape_id).order_by(Tache.numero)


def load_taches_brouillon(session: Session, etape_id: int) -> List[Tache]:
    return list(session.exec(_select(etape_id).where(Tache.statut == BROUILLON)).all())


def load_taches_validees(session: Session, etape_id: int) -> List[Tache]:
    return list(session.exec(_select(etape_id).where(Tache.statut != BROUILLON)).all())


def load_all_taches(session: Session, etape_id: int) -> List[Tache]:
    return list(session.exec(_select(etape_id)).all())


# ──────────────────────────────────────────────────────────────────────────────
# Écriture
# ──────────────────────────────────────────────────────────────────────────────
def _to_row(etape_id: int, t: TacheGeneree, index: int, statut: str) -> Tache:
    numero = t.numero or index + 1
    return Tache(
        etape_id=etape_id,
        numero=numero,
        ordre=numero,
        titre=t.titre,
        description=t.description,
        statut=statut,
        duree_estimee_minutes=t.duree_estimee_minutes or 10,
        est_critique=t.est_critique,
        outils_necessaires=list(t.outils_necessaires),
        conseils_pro=t.conseils_pro,
        completed_at=utcnow() if is_termine(statut) else None,
    )


def _delete_where(session: Session, etape_id: int, statut: Optional[str] = None) -> None:
    q = delete(Tache).where(Tache.etape_id == etape_id)
    if statut:
        q = q.where(Tache.statut == statut)
    session.exec(q)


def save_taches_brouillon(session: Session, etape_id: int, taches: List[TacheGeneree]) -> List[Tache]:
    get_etape(session, etape_id)
    try:
        _delete_where(session, etape_id, BROUILLON)
        session.add_all([_to_row(etape_id, t, i, BROUILLON) for i, t in enumerate(taches)])
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        log.error("Erreur sauvegarde tâches brouillon étape %s: %s", etape_id, e)
        raise UpstreamError("Erreur lors de la sauvegarde des tâches")
    return load_taches_brouillon(session, etape_id)


def valider_taches(session: Session, etape_id: int, taches: List[TacheGeneree]) -> List[Tache]:
    """Remplace toutes les tâches de l'étape (statut à_faire) et recalcule la progression."""
    get_etape(session, etape_id)
    try:
        _delete_where(session, etape_id)
        session.add_all([_to_row(etape_id, t, i, A_FAIRE) for i, t in enumerate(taches)])
        update_etape_progression(session, etape_id, commit=False)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        log.error("Erreur validation tâches étape %s: %s", etape_id, e)
        raise UpstreamError("Erreur lors de la validation des tâches")
    log.info("%d tâches validées pour étape %s", len(taches), etape_id)
    return load_taches_validees(session, etape_id)


def _apply_to_row(row: Tache, t: TacheGeneree, index: int, now) -> None:
    numero = t.numero or index + 1
    values = {
        "numero": numero,
        "ordre": numero,
        "titre": t.titre,
        "description": t.description,
        "duree_estimee_minutes": t.duree_estimee_minutes or 10,
        "est_critique": t.est_critique,
        "outils_necessaires": list(t.outils_necessaires),
        "conseils_pro": t.conseils_pro,
    }
    statut = t.statut or row.statut
    if statut != row.statut:
        values["statut"] = statut
        values["completed_at"] = now if is_termine(statut) else None
    changed = False
    for key, value in values.items():
        if getattr(row, key) != value:
            setattr(row, key, value)
            changed = True
    if changed:
        row.updated_at = now


def sync_taches(session: Session, etape_id: int, taches: List[TacheGeneree]) -> List[Tache]:
    """
    Aligne les tâches validées de l'étape sur `taches`.

    Les lignes existantes (même id) sont modifiées sur place : id, created_at,
    completed_at, notes et durée réelle sont conservés. Les tâches sans id sont
    insérées, les tâches validées absentes de la liste sont supprimées.
    Les brouillons ne sont pas touchés.
    """
    get_etape(session, etape_id)
    existing = {t.id: t for t in load_taches_validees(session, etape_id)}
    now = utcnow()
    try:
        kept = set()
        for i, t in enumerate(taches):
            row = existing.get(t.id) if t.id is not None else None
            if row is None:
                session.add(_to_row(etape_id, t, i, t.statut or A_FAIRE))
                continue
            kept.add(row.id)
            _apply_to_row(row, t, i, now)
            session.add(row)
        for row_id, row in existing.items():
            if row_id not in kept:
                session.delete(row)
        session.flush()
        update_etape_progression(session, etape_id, commit=False)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        log.error("Erreur mise à jour tâches étape %s: %s", etape_id, e)
        raise UpstreamError("Erreur lors de la mise à jour des tâches")
    return load_taches_validees(session, etape_id)


def delete_taches(session: Session, etape_id: int, statut: Optional[str] = None) -> None:
    get_etape(session, etape_id)
    _delete_where(session, etape_id, statut)
    update_etape_progression(session, etape_id, commit=False)
    session.commit()
    log.info("Tâches supprimées (statut: %s) étape %s", statut or "tous", etape_id)


def delete_tache_by_id(session: Session, tache_id: int) -> None:
    tache = session.get(Tache, tache_id)
    if not tache:
        raise NotFoundError("Tâche introuvable")
    etape_id = tache.etape_id
    session.delete(tache)
    session.flush()
    update_etape_progression(session, etape_id, commit=False)
    session.commit()


def _set_statut(session: Session, tache_id: int, statut: str) -> Tache:
    tache = session.get(Tache, tache_id)
    if not tache:
        raise NotFoundError("Tâche introuvable")
    tache.statut = statut
    tache.completed_at = utcnow() if is_termine(statut) else None
    tache.updated_at = utcnow()
    session.add(tache)
    update_etape_progression(session, tache.etape_id, commit=False)
    session.commit()
    session.refresh(tache)
    return tache


def terminer_tache(session: Session, tache_id: int) -> Tache:
    return _set_statut(session, tache_id, TERMINEE)


def reset_tache(session: Session, tache_id: int) -> Tache:
    return _set_statut(session, tache_id, A_FAIRE)


def terminer_toutes_taches(session: Session, etape_id: int) -> int:
    get_etape(session, etape_id)
    count = 0
    now = utcnow()
    for t in load_taches_validees(session, etape_id):
        if not is_termine(t.statut):
            t.statut = TERMINEE
            t.completed_at = now
            t.updated_at = now
            session.add(t)
            count += 1
    update_etape_progression(session, etape_id, commit=False)
    session.commit()
    log.info("%d tâches terminées pour étape %s", count, etape_id)
    return count


# ──────────────────────────────────────────────────────────────────────────────
# Utilitaires
# ──────────────────────────────────────────────────────────────────────────────
def calculer_totaux(taches: List[TacheGeneree]) -> Dict[str, Any]:
    nombre = len(taches)
    minutes = sum(t.duree_estimee_minutes or 0 for t in taches)
    terminees = sum(1 for t in taches if is_termine(t.statut))
    return {
        "nombre_taches": nombre,
        "duree_totale_minutes": minutes,
        "duree_totale_heures": round(minutes / 60, 1),
        "taches_critiques": sum(1 for t in taches if t.est_critique),
        "taches_terminees": terminees,
        "progression": round_half_up(100 * terminees / nombre) if nombre else 0,
    }


def aggreger_outils(taches: List[TacheGeneree]) -> List[str]:
    return sorted({o for t in taches for o in t.outils_necessaires})


def compter_par_statut(taches: List[TacheGeneree]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for t in taches:
        statut = t.statut or A_FAIRE
        counts[statut] = counts.get(statut, 0) + 1
    return counts
