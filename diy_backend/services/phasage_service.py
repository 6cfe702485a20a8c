# diy_backend/services/phasage_service.py
"""
Phasage automatique d'un chantier : découpage en lots de travaux
à partir des informations collectées et des règles métier (regles_phasage).
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from diy_backend.errors import NotFoundError, UpstreamError
from diy_backend.models import AlerteCritique, Chantier, ChantierTypeConfig, Etape, Lot, ReglePhasage, Tache, utcnow
from diy_backend.schemas import LotGenere, ResultatPhasage
from diy_backend.services.llm_service import LLMClient, generate_json
from diy_backend.services.progression_service import update_chantier_progression
from diy_backend.services.prompt_service import fill_template, load_prompt_text

log = logging.getLogger(__name__)

PROMPT_CODE = "system_phasage"

DEFAULT_PHASAGE_PROMPT = """Tu es un conducteur de travaux expérimenté qui accompagne un bricoleur.
À partir des informations du projet, découpe le chantier en LOTS de travaux ordonnés.

{{CHANTIER_CONTEXT}}

## RÈGLES MÉTIER À RESPECTER
{{REGLES_PHASAGE}}

## FORMAT DE RÉPONSE
Réponds UNIQUEMENT avec un objet JSON :
{
  "ready_for_phasage": true,
  "analyse": "synthèse du projet en 2-3 phrases",
  "lots": [
    {
      "ordre": 1,
      "titre": "Dépose et démolition",
      "description": "...",
      "code_expertise": "demolition",
      "niveau_requis": "debutant|intermediaire|confirme",
      "duree_estimee_heures": 8,
      "cout_estime": 150,
      "prerequis_stricts": [],
      "points_attention": "...",
      "dependances_type": "sequentiel|parallele"
    }
  ],
  "alertes": [{"type": "critique|attention|conseil", "message": "..."}],
  "budget_total_estime": 0,
  "duree_totale_estimee_heures": 0
}"""

NIVEAU_DIFFICULTE = {"debutant": 1, "intermediaire": 2, "confirme": 3}


# ──────────────────────────────────────────────────────────────────────────────
# Règles & alertes
# ──────────────────────────────────────────────────────────────────────────────
def load_regles_phasage(session: Session) -> List[ReglePhasage]:
    regles = session.exec(
        select(ReglePhasage)
        .where(ReglePhasage.est_active == True)  # noqa: E712
        .order_by(ReglePhasage.priorite)
    ).all()
    log.info("%d règles de phasage chargées", len(regles))
    return list(regles)


def load_alertes_critiques(session: Session) -> List[AlerteCritique]:
    return list(session.exec(select(AlerteCritique)).all())


def format_regles_for_prompt(regles: List[ReglePhasage]) -> str:
    sections = [
        ("interdit", "### INTERDITS (ne jamais proposer)"),
        ("dependance", "### ORDRE DES TRAVAUX (dépendances obligatoires)"),
        ("alerte", "### ALERTES SÉCURITÉ"),
        ("conseil", "### BONNES PRATIQUES"),
    ]
    blocks = []
    for type_regle, header in sections:
        lignes = [
            f"- {r.titre} : {r.message_ia or r.description}"
            for r in regles
            if r.type_regle == type_regle
        ]
        if lignes:
            blocks.append("\n".join([header] + lignes))
    return "\n\n".join(blocks)


# ──────────────────────────────────────────────────────────────────────────────
# Contexte chantier
# ──────────────────────────────────────────────────────────────────────────────
def _join(values: Any) -> str:
    if isinstance(values, (list, tuple)):
        return ", ".join(str(v) for v in values if v)
    return str(values or "")


def build_chantier_context(
    chantier: Chantier,
    infos: Optional[Dict[str, Any]] = None,
    type_config: Optional[ChantierTypeConfig] = None,
) -> str:
    """Bloc texte décrivant le projet, injecté dans {{CHANTIER_CONTEXT}}."""
    meta: Dict[str, Any] = {**(chantier.infos or {}), **(infos or {})}
    lines = [
        "## INFORMATIONS DU PROJET",
        "",
        f"**Titre :** {chantier.titre or 'Non défini'}",
        f"**Description :** {chantier.description or 'Non définie'}",
    ]
    if type_config:
        lines.append(f"**Type de chantier :** {type_config.nom}")
    if meta.get("surface_m2"):
        lines.append(f"**Surface :** {meta['surface_m2']} m²")
    if meta.get("style_souhaite"):
        lines.append(f"**Style souhaité :** {meta['style_souhaite']}")

    budget = chantier.budget_initial or meta.get("budget_max")
    if budget:
        inclus = "(matériaux inclus)" if meta.get("budget_inclut_materiaux") else "(hors matériaux)"
        lines.append(f"**Budget :** {budget}€ {inclus}")
    if meta.get("disponibilite_heures_semaine"):
        lines.append(f"**Disponibilité :** {meta['disponibilite_heures_semaine']}h/semaine")
    if meta.get("deadline_semaines"):
        lines.append(f"**Objectif :** {meta['deadline_semaines']} semaines")
    if meta.get("etat_existant"):
        lines.append(f"**État existant :** {meta['etat_existant']}")

    for key, label in (
        ("equipements_souhaites", "Équipements à installer"),
        ("elements_a_deposer", "Éléments à déposer"),
        ("elements_a_conserver", "Éléments à conserver"),
    ):
        if meta.get(key):
            lines.append(f"**{label} :** {_join(meta[key])}")

    reseaux = meta.get("reseaux") or {}
    a_refaire = [
        label
        for key, label in (
            ("electricite_a_refaire", "Électricité à refaire"),
            ("plomberie_a_refaire", "Plomberie à refaire"),
            ("ventilation_a_prevoir", "Ventilation à prévoir"),
        )
        if reseaux.get(key)
    ]
    if a_refaire:
        lines.append(f"**Réseaux :** {', '.join(a_refaire)}")

    if meta.get("competences_ok"):
        lines.append(f"**Compétences maîtrisées par le bricoleur :** {_join(meta['competences_ok'])}")
    if meta.get("competences_faibles"):
        lines.append(f"**Compétences faibles (attention requise) :** {_join(meta['competences_faibles'])}")
    if meta.get("travaux_pro_suggeres"):
        lines.append(f"**Travaux suggérés pour un pro :** {_join(meta['travaux_pro_suggeres'])}")
    if meta.get("contraintes"):
        lines.append(f"**Contraintes particulières :** {meta['contraintes']}")

    if type_config:
        if type_config.lots_typiques:
            lines.append(f"**Lots typiques pour ce type :** {_join(type_config.lots_typiques)}")
        if type_config.risques_courants:
            lines.append(f"**Risques courants :** {_join(type_config.risques_courants)}")
    return "\n".join(lines)


def _get_chantier(session: Session, chantier_id: int) -> Chantier:
    chantier = session.get(Chantier, chantier_id)
    if not chantier:
        raise NotFoundError("Chantier introuvable")
    return chantier


# ──────────────────────────────────────────────────────────────────────────────
# Génération (aucune écriture)
# ──────────────────────────────────────────────────────────────────────────────
def generate_phasage(
    session: Session,
    llm: LLMClient,
    chantier_id: int,
    infos: Optional[Dict[str, Any]] = None,
    ia_settings: Optional[Dict[str, Any]] = None,
) -> ResultatPhasage:
    chantier = _get_chantier(session, chantier_id)
    type_config = None
    if chantier.type_code:
        type_config = session.exec(
            select(ChantierTypeConfig).where(ChantierTypeConfig.code == chantier.type_code)
        ).first()

    regles = load_regles_phasage(session)
    prompt = fill_template(
        load_prompt_text(session, PROMPT_CODE, DEFAULT_PHASAGE_PROMPT),
        {
            "CHANTIER_CONTEXT": build_chantier_context(chantier, infos, type_config),
            "REGLES_PHASAGE": format_regles_for_prompt(regles),
        },
    )
    ia = ia_settings or {}
    result = generate_json(
        llm,
        prompt,
        "Génère le phasage de ce projet en JSON.",
        ResultatPhasage.model_validate,
        model=ia.get("model"),
        temperature=ia.get("temperature", 0.3),
        max_tokens=ia.get("max_tokens", 4000),
        label="phasage",
    )
    result.lots.sort(key=lambda l: l.ordre)
    log.info("Phasage généré pour chantier %s: %d lots", chantier_id, len(result.lots))
    return result


# ──────────────────────────────────────────────────────────────────────────────
# Persistance
# ──────────────────────────────────────────────────────────────────────────────
def _delete_lots_cascade(session: Session, chantier_id: int) -> int:
    lot_ids = session.exec(select(Lot.id).where(Lot.chantier_id == chantier_id)).all()
    if not lot_ids:
        return 0
    etape_ids = session.exec(select(Etape.id).where(Etape.lot_id.in_(lot_ids))).all()
    if etape_ids:
        session.exec(delete(Tache).where(Tache.etape_id.in_(etape_ids)))
        session.exec(delete(Etape).where(Etape.id.in_(etape_ids)))
    session.exec(delete(Lot).where(Lot.chantier_id == chantier_id))
    return len(lot_ids)


def save_lots(session: Session, chantier_id: int, lots: List[LotGenere], replace: bool = False) -> List[Lot]:
    """
    Insère tous les lots et passe le chantier en `en_cours`, en un seul commit.
    Avec `replace`, les lots existants (et leurs enfants) sont supprimés dans
    la même transaction.
    """
    chantier = _get_chantier(session, chantier_id)
    try:
        if replace:
            removed = _delete_lots_cascade(session, chantier_id)
            log.info("%d lots remplacés pour chantier %s", removed, chantier_id)
        rows = [
            Lot(
                chantier_id=chantier_id,
                ordre=lot.ordre,
                titre=lot.titre,
                description=lot.description,
                code_expertise=lot.code_expertise,
                niveau_requis=lot.niveau_requis,
                niveau_difficulte=NIVEAU_DIFFICULTE.get(lot.niveau_requis, 2),
                duree_estimee_heures=lot.duree_estimee_heures,
                cout_estime=lot.cout_estime,
                prerequis_stricts=list(lot.prerequis_stricts),
                points_attention=lot.points_attention,
                dependances_type=lot.dependances_type,
                statut="a_venir",
                progression=0,
            )
            for lot in lots
        ]
        session.add_all(rows)
        chantier.statut = "en_cours"
        chantier.updated_at = utcnow()
        session.add(chantier)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        log.error("Erreur sauvegarde lots chantier %s: %s", chantier_id, e)
        raise UpstreamError("Erreur lors de la sauvegarde des lots")
    for r in rows:
        session.refresh(r)
    log.info("%d lots sauvegardés pour le chantier %s", len(rows), chantier_id)
    return rows


def delete_lots(session: Session, chantier_id: int) -> int:
    _get_chantier(session, chantier_id)
    try:
        count = _delete_lots_cascade(session, chantier_id)
        update_chantier_progression(session, chantier_id, commit=False)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        log.error("Erreur suppression lots chantier %s: %s", chantier_id, e)
        raise UpstreamError("Erreur lors de la suppression des lots")
    log.info("%d lots supprimés pour le chantier %s", count, chantier_id)
    return count


def load_lots(session: Session, chantier_id: int) -> List[Lot]:
    return list(session.exec(select(Lot).where(Lot.chantier_id == chantier_id).order_by(Lot.ordre)).all())
