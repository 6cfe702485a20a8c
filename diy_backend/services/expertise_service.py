# diy_backend/services/expertise_service.py
"""
Bascule vers un expert dédié.

L'assistant généraliste signale qu'une expertise est identifiée via un JSON
`{"ready_for_expert": true, "expertise_identifiee": {...}}`. Le prompt de
l'expert est cherché dans prompts_library (`expert_<specialite>`) et généré
une seule fois s'il n'existe pas encore.
"""
import json
import logging
import re
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from diy_backend.errors import ValidationError
from diy_backend.models import PromptLibrary
from diy_backend.schemas import ExpertiseIdentifiee, ExpertTransition, PromptExpert
from diy_backend.services.actions import find_json_object
from diy_backend.services.llm_service import FENCED_BLOCK, LLMClient, generate_json
from diy_backend.services.prompt_service import get_prompt
from diy_backend.utils import generate_slug

log = logging.getLogger(__name__)

MARKER = '"ready_for_expert"'

_CONFIRM_PATTERNS = [
    re.compile(
        r"^(oui|ok|yes|yep|ouais|d'accord|dac|go|c'est parti|on y va|allons-y|parfait|super|génial|let's go|vas-y|nickel)$",
        re.IGNORECASE,
    ),
    re.compile(r"^(oui|ok|yes|yep|ouais|d'accord|dac|go|parfait|super)[!.\s]*$", re.IGNORECASE),
    re.compile(r"c'est parti", re.IGNORECASE),
    re.compile(r"on y va", re.IGNORECASE),
    re.compile(r"allons-y", re.IGNORECASE),
    re.compile("👍"),
    re.compile(r"^!$"),
]

EXPERT_TEMPLATE = """Tu es {nom_affichage}, un expert hautement qualifié.

DOMAINE : {domaine}
SPÉCIALITÉ : {specialite}

CE QUE L'UTILISATEUR VEUT :
{contexte_resume}

TON RÔLE :
- Répondre avec précision et expertise aux questions dans ton domaine
- Citer les normes applicables (DTU, NFC, etc.) quand pertinent
- Donner des conseils pratiques et sécuritaires
- Alerter sur les travaux nécessitant un professionnel certifié
- Adapter ton niveau de langage (débutant = pédagogue, expert = technique)

SÉCURITÉ :
- Rappeler les EPI (équipements de protection) nécessaires
- Mentionner les risques électriques, chimiques ou physiques
- Indiquer clairement quand un travail doit être fait par un pro

STYLE OBLIGATOIRE :
- Tu tutoies l'utilisateur
- PAS de markdown
- Texte simple et lisible
- Direct et pratique
- Si plusieurs étapes, utilise des numéros simples (1. 2. 3.)
- Si tu ne sais pas, dis-le honnêtement

Tu es là pour aider à réussir ce projet en toute sécurité."""

GENERATOR_SYSTEM = (
    "Tu rédiges des prompts système pour des assistants experts en bricolage. "
    "À partir du modèle fourni et du contexte de la conversation, produis le prompt "
    "final adapté à la spécialité. Réponds UNIQUEMENT en JSON : {\"prompt_text\": \"...\"}"
)

CLASSIFIER_SYSTEM = (
    "Tu es un assistant spécialisé dans la classification de problèmes de bricolage. "
    "Tu réponds UNIQUEMENT en JSON valide, sans markdown ni backticks."
)


# ──────────────────────────────────────────────────────────────────────────────
# Détection
# ──────────────────────────────────────────────────────────────────────────────
def _candidates(content: str):
    for m in FENCED_BLOCK.finditer(content):
        if MARKER in m.group(1):
            try:
                yield json.loads(m.group(1))
            except json.JSONDecodeError:
                log.warning("Bloc ready_for_expert illisible")
    found = find_json_object(content, MARKER)
    if found:
        yield found[2]


def extract_expert_transition(content: str) -> Optional[ExpertTransition]:
    if not content or MARKER not in content:
        return None
    for data in _candidates(content):
        if not isinstance(data, dict) or data.get("ready_for_expert") is not True:
            continue
        try:
            transition = ExpertTransition.model_validate(data)
        except PydanticValidationError:
            log.warning("expertise_identifiee incomplète, transition ignorée")
            continue
        log.info("Expertise identifiée: %s", transition.expertise_identifiee.specialite)
        return transition
    return None


def is_user_confirming_expert(message: str) -> bool:
    normalized = (message or "").strip().lower()
    return any(p.search(normalized) for p in _CONFIRM_PATTERNS)


def generate_prompt_code(specialite: str) -> str:
    return "expert_" + generate_slug(specialite).replace("-", "_")


# ──────────────────────────────────────────────────────────────────────────────
# Cache-aside prompts_library
# ──────────────────────────────────────────────────────────────────────────────
def _from_row(row: PromptLibrary, expertise: ExpertiseIdentifiee, is_new: bool) -> PromptExpert:
    return PromptExpert(
        code=row.code,
        titre=row.titre,
        prompt_text=row.prompt_text,
        nom_affichage=expertise.nom_affichage,
        is_new=is_new,
    )


def generate_expert_prompt(llm: LLMClient, expertise: ExpertiseIdentifiee, contexte_conversation: str = "") -> str:
    base = EXPERT_TEMPLATE.format(**expertise.model_dump())
    user = f"MODÈLE :\n{base}\n\nCONTEXTE DE LA CONVERSATION :\n{contexte_conversation or '(aucun)'}"

    def _validate(data: Dict[str, Any]) -> str:
        text = data.get("prompt_text")
        if not isinstance(text, str) or not text.strip():
            raise ValueError("prompt_text vide")
        return text.strip()

    return generate_json(llm, GENERATOR_SYSTEM, user, _validate, temperature=0.7, max_tokens=1500, label="expert")


def get_or_create_expert_prompt(
    session: Session,
    llm: LLMClient,
    expertise: ExpertiseIdentifiee,
    contexte_conversation: str = "",
) -> PromptExpert:
    code = generate_prompt_code(expertise.specialite)
    if code == "expert_":
        raise ValidationError("Spécialité d'expertise vide")

    existing = get_prompt(session, code)
    if existing:
        log.info("Prompt expert existant: %s", code)
        return _from_row(existing, expertise, is_new=False)

    log.info("Prompt expert absent, génération: %s", code)
    text = generate_expert_prompt(llm, expertise, contexte_conversation)
    row = PromptLibrary(
        code=code,
        titre=f"Expert - {expertise.nom_affichage}",
        categorie="expert",
        prompt_text=text,
        description=f"Prompt auto-généré pour {expertise.domaine} / {expertise.specialite}",
        tags=["expert", "auto-generated", expertise.domaine, expertise.specialite],
        est_actif=True,
        temperature=0.7,
        max_tokens=1500,
        model=getattr(llm, "model", None),
    )
    session.add(row)
    try:
        session.commit()
    except IntegrityError:
        # une autre requête vient d'insérer le même code
        session.rollback()
        stored = session.exec(select(PromptLibrary).where(PromptLibrary.code == code)).first()
        if stored is None:
            raise
        log.info("Prompt expert %s créé en parallèle, version stockée réutilisée", code)
        return _from_row(stored, expertise, is_new=False)
    session.refresh(row)
    log.info("Prompt expert sauvegardé: %s", code)
    return _from_row(row, expertise, is_new=True)


def detect_expertise_transition(
    session: Session,
    llm: LLMClient,
    content: str,
    contexte_conversation: str = "",
) -> Optional[Dict[str, Any]]:
    """None si la réponse ne signale aucune expertise (aucune lecture, aucun appel IA)."""
    transition = extract_expert_transition(content)
    if transition is None or not transition.ready_for_expert:
        return None
    prompt = get_or_create_expert_prompt(session, llm, transition.expertise_identifiee, contexte_conversation)
    return {"transition": transition, "prompt": prompt}


def classify_expertise(llm: LLMClient, prompt: str, model: Optional[str] = None) -> Dict[str, Any]:
    """Classification courte d'un problème (réponse JSON du modèle)."""
    return generate_json(
        llm,
        CLASSIFIER_SYSTEM,
        prompt,
        lambda data: data,
        model=model,
        temperature=0.3,
        max_tokens=150,
        label="detect-expertise",
    )
