# diy_backend/services/etapes_service.py
"""
Génération et persistance des étapes d'un lot.

Cycle de vie : preview (rien n'est écrit) → brouillon (optionnel) → validation.
La validation remplace toutes les étapes du lot en un seul commit.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from diy_backend.errors import NotFoundError, UpstreamError
from diy_backend.models import Chantier, Etape, Lot, Tache, utcnow
from diy_backend.schemas import EtapeGeneree, Materiau, ResultatEtapes
from diy_backend.services.llm_service import LLMClient, generate_json
from diy_backend.services.progression_service import update_lot_progression
from diy_backend.services.prompt_service import fill_template, load_prompt_text

log = logging.getLogger(__name__)

PROMPT_CODE = "system_etapes"
BROUILLON = "brouillon"
A_VENIR = "à_venir"

EXPERTISE_LABELS = {
    "demolition": "en démolition et dépose",
    "plomberie": "plombier",
    "electricite": "électricien",
    "plaquiste": "plaquiste",
    "carreleur": "carreleur",
    "peintre": "peintre",
    "menuisier": "menuisier",
    "maconnerie": "maçon",
    "isolation": "en isolation",
    "generaliste": "du bâtiment",
}

DEFAULT_ETAPES_PROMPT = """Tu es un artisan {{EXPERTISE}} expérimenté qui guide un bricoleur.

## LE CHANTIER
{{CHANTIER_CONTEXT}}

## LE LOT À DÉTAILLER
{{LOT_CONTEXT}}

Découpe ce lot en étapes concrètes et ordonnées (entre 3 et 12).
Pour chaque étape indique la durée, la difficulté, les outils et matériaux.

Réponds UNIQUEMENT avec un objet JSON :
{
  "etapes": [
    {
      "numero": 1,
      "titre": "...",
      "description": "...",
      "instructions": "...",
      "duree_estimee_minutes": 60,
      "difficulte": "facile|moyen|difficile",
      "outils_necessaires": ["..."],
      "materiaux_necessaires": [{"nom": "...", "quantite": "2", "unite": "sac"}],
      "precautions": "...",
      "conseils_pro": "..."
    }
  ],
  "duree_totale_estimee_minutes": 0,
  "conseils_generaux": "..."
}"""


# ──────────────────────────────────────────────────────────────────────────────
# Contexte
# ──────────────────────────────────────────────────────────────────────────────
def get_lot(session: Session, lot_id: int) -> Lot:
    lot = session.get(Lot, lot_id)
    if not lot:
        raise NotFoundError("Lot introuvable")
    return lot


def build_chantier_context(chantier: Chantier) -> str:
    meta = chantier.infos or {}
    lines = [
        f"**Projet :** {chantier.titre or 'Non défini'}",
        f"**Description :** {chantier.description or 'Non définie'}",
    ]
    surface = meta.get("surface_m2") or meta.get("surface_sol_m2")
    if surface:
        lines.append(f"**Surface :** {surface} m²")
    dims = meta.get("dimensions")
    if isinstance(dims, dict):
        lines.append(
            f"**Dimensions :** {dims.get('longueur_m')}×{dims.get('largeur_m')}×{dims.get('hauteur_m')}m"
        )
    if meta.get("competences_ok"):
        lines.append(f"**Compétences OK :** {', '.join(meta['competences_ok'])}")
    if meta.get("competences_faibles"):
        lines.append(f"**Compétences faibles :** {', '.join(meta['competences_faibles'])}")
    if meta.get("contraintes"):
        lines.append(f"**Contraintes :** {meta['contraintes']}")
    return "\n".join(lines)


def build_lot_context(lot: Lot) -> str:
    lines = [
        f"**Lot :** {lot.titre}",
        f"**Description :** {lot.description or 'Non définie'}",
        f"**Durée estimée :** {lot.duree_estimee_heures or 0} heures",
    ]
    if lot.cout_estime:
        lines.append(f"**Budget estimé :** {lot.cout_estime}€")
    if lot.points_attention:
        lines.append(f"**Points d'attention :** {lot.points_attention}")
    return "\n".join(lines)


def expertise_label(code: Optional[str]) -> str:
    return EXPERTISE_LABELS.get(code or "", "du bâtiment")


# ──────────────────────────────────────────────────────────────────────────────
# Génération (aucune écriture)
# ──────────────────────────────────────────────────────────────────────────────
def generate_etapes(
    session: Session,
    llm: LLMClient,
    lot_id: int,
    ia_settings: Optional[Dict[str, Any]] = None,
) -> ResultatEtapes:
    lot = get_lot(session, lot_id)
    chantier = session.get(Chantier, lot.chantier_id)
    if not chantier:
        raise NotFoundError("Chantier introuvable")

    prompt = fill_template(
        load_prompt_text(session, PROMPT_CODE, DEFAULT_ETAPES_PROMPT),
        {
            "EXPERTISE": expertise_label(lot.code_expertise),
            "CHANTIER_CONTEXT": build_chantier_context(chantier),
            "LOT_CONTEXT": build_lot_context(lot),
        },
    )
    ia = ia_settings or {}
    result = generate_json(
        llm,
        prompt,
        "Génère les étapes de ce lot en JSON.",
        ResultatEtapes.model_validate,
        model=ia.get("model"),
        temperature=ia.get("temperature", 0.3),
        max_tokens=ia.get("max_tokens", 4000),
        label="etapes",
    )
    if not result.duree_totale_estimee_minutes:
        result.duree_totale_estimee_minutes = calculer_totaux(result.etapes)["duree_totale_minutes"]
    log.info("Étapes générées pour lot %s: %d", lot_id, len(result.etapes))
    return result


# ──────────────────────────────────────────────────────────────────────────────
# Lecture
# ──────────────────────────────────────────────────────────────────────────────
def to_etape_generee(e: Etape) -> EtapeGeneree:
    return EtapeGeneree(
        numero=e.numero,
        titre=e.titre,
        description=e.description or "",
        instructions=e.instructions,
        duree_estimee_minutes=e.duree_estimee_minutes or 0,
        difficulte=e.difficulte if e.difficulte in ("facile", "moyen", "difficile") else "moyen",
        outils_necessaires=e.outils_necessaires or [],
        materiaux_necessaires=[Materiau.model_validate(m) for m in (e.materiaux_necessaires or [])],
        precautions=e.precautions,
        conseils_pro=e.conseils_pro,
    )


def load_etapes(session: Session, lot_id: int) -> List[Etape]:
    return list(session.exec(select(Etape).where(Etape.lot_id == lot_id).order_by(Etape.numero)).all())


def load_etapes_brouillon(session: Session, lot_id: int) -> List[EtapeGeneree]:
    rows = session.exec(
        select(Etape).where(Etape.lot_id == lot_id, Etape.statut == BROUILLON).order_by(Etape.numero)
    ).all()
    return [to_etape_generee(e) for e in rows]


def load_etapes_validees(session: Session, lot_id: int) -> List[Etape]:
    return list(
        session.exec(
            select(Etape).where(Etape.lot_id == lot_id, Etape.statut != BROUILLON).order_by(Etape.numero)
        ).all()
    )


def has_brouillon(session: Session, lot_id: int) -> bool:
    return session.exec(
        select(Etape.id).where(Etape.lot_id == lot_id, Etape.statut == BROUILLON).limit(1)
    ).first() is not None


def has_etapes_validees(session: Session, lot_id: int) -> bool:
    return session.exec(
        select(Etape.id).where(Etape.lot_id == lot_id, Etape.statut != BROUILLON).limit(1)
    ).first() is not None


# ──────────────────────────────────────────────────────────────────────────────
# Écriture
# ──────────────────────────────────────────────────────────────────────────────
def _to_row(lot_id: int, etape: EtapeGeneree, index: int, statut: str) -> Etape:
    numero = etape.numero or index + 1
    return Etape(
        lot_id=lot_id,
        numero=numero,
        ordre=numero,
        titre=etape.titre,
        description=etape.description,
        instructions=etape.instructions,
        duree_estimee_minutes=etape.duree_estimee_minutes,
        difficulte=etape.difficulte,
        outils_necessaires=list(etape.outils_necessaires),
        materiaux_necessaires=[m.model_dump() for m in etape.materiaux_necessaires],
        precautions=etape.precautions,
        conseils_pro=etape.conseils_pro,
        statut=statut,
        progression=0,
    )


def _delete_where(session: Session, lot_id: int, statut: Optional[str] = None) -> int:
    q = select(Etape.id).where(Etape.lot_id == lot_id)
    if statut:
        q = q.where(Etape.statut == statut)
    ids = session.exec(q).all()
    if ids:
        session.exec(delete(Tache).where(Tache.etape_id.in_(ids)))
        session.exec(delete(Etape).where(Etape.id.in_(ids)))
    return len(ids)


def save_etapes_brouillon(session: Session, lot_id: int, etapes: List[EtapeGeneree]) -> List[Etape]:
    """Remplace les brouillons du lot."""
    get_lot(session, lot_id)
    try:
        _delete_where(session, lot_id, BROUILLON)
        rows = [_to_row(lot_id, e, i, BROUILLON) for i, e in enumerate(etapes)]
        session.add_all(rows)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        log.error("Erreur sauvegarde étapes brouillon lot %s: %s", lot_id, e)
        raise UpstreamError("Erreur lors de la sauvegarde des étapes")
    log.info("%d étapes brouillon sauvegardées pour lot %s", len(rows), lot_id)
    return rows


def valider_etapes(session: Session, lot_id: int, etapes: Optional[List[EtapeGeneree]] = None) -> List[Etape]:
    """
    Avec `etapes` : remplace toutes les étapes du lot (statut à_venir).
    Sans : promeut les brouillons existants.
    Un seul commit dans les deux cas.
    """
    lot = get_lot(session, lot_id)
    try:
        if etapes:
            _delete_where(session, lot_id)
            session.add_all([_to_row(lot_id, e, i, A_VENIR) for i, e in enumerate(etapes)])
            changed = len(etapes)
        else:
            drafts = session.exec(
                select(Etape).where(Etape.lot_id == lot_id, Etape.statut == BROUILLON)
            ).all()
            for row in drafts:
                row.statut = A_VENIR
                row.updated_at = utcnow()
                session.add(row)
            changed = len(drafts)
        if changed:
            # nouvelles étapes à 0 % : le lot repart de "a_venir" avant recalcul
            lot.statut = "a_venir"
            session.add(lot)
            session.flush()
            update_lot_progression(session, lot_id, commit=False)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        log.error("Erreur validation étapes lot %s: %s", lot_id, e)
        raise UpstreamError("Erreur lors de la validation des étapes")
    rows = load_etapes_validees(session, lot_id)
    log.info("%d étapes validées pour lot %s", len(rows), lot_id)
    return rows


def delete_etapes(session: Session, lot_id: int, statut: Optional[str] = None) -> int:
    get_lot(session, lot_id)
    try:
        count = _delete_where(session, lot_id, statut)
        if count:
            update_lot_progression(session, lot_id, commit=False)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        log.error("Erreur suppression étapes lot %s: %s", lot_id, e)
        raise UpstreamError("Erreur lors de la suppression des étapes")
    return count


# ──────────────────────────────────────────────────────────────────────────────
# Utilitaires
# ──────────────────────────────────────────────────────────────────────────────
def calculer_totaux(etapes: List[EtapeGeneree]) -> Dict[str, Any]:
    minutes = sum(e.duree_estimee_minutes or 0 for e in etapes)
    return {
        "duree_totale_minutes": minutes,
        "duree_totale_heures": round(minutes / 60, 1),
        "nombre_etapes": len(etapes),
    }


def _to_float(value: str) -> float:
    try:
        return float(str(value).replace(",", "."))
    except ValueError:
        return 0.0


def aggreger_materiaux(etapes: List[EtapeGeneree]) -> List[Materiau]:
    totals: Dict[tuple, float] = {}
    for e in etapes:
        for m in e.materiaux_necessaires:
            key = (m.nom, m.unite)
            totals[key] = totals.get(key, 0.0) + _to_float(m.quantite)
    return [
        Materiau(nom=nom, quantite=f"{q:g}", unite=unite)
        for (nom, unite), q in totals.items()
    ]


def aggreger_outils(etapes: List[EtapeGeneree]) -> List[str]:
    return sorted({o for e in etapes for o in e.outils_necessaires})
