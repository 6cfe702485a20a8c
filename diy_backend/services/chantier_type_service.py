# diy_backend/services/chantier_type_service.py
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from diy_backend.config import settings as env
from diy_backend.models import AlerteCritique, ChantierTypeConfig

log = logging.getLogger(__name__)

# premier type dont un mot-clé apparaît dans la description
TYPE_PATTERNS: Dict[str, List[str]] = {
    "cuisine": ["cuisine", "cuisson", "plaque", "hotte", "évier cuisine", "ilot central", "îlot central", "plan de travail cuisine"],
    "salle_de_bain": ["salle de bain", "sdb", "douche", "baignoire", "vasque", "wc", "toilette", "sanitaire"],
    "chambre": ["chambre", "dressing", "placard chambre", "suite parentale"],
    "salon": ["salon", "séjour", "living", "cheminée", "poêle", "pièce de vie"],
    "combles": ["combles", "grenier", "sous-toit", "mansarde", "rampant", "sous pente"],
    "terrasse": ["terrasse", "balcon", "deck", "extérieur bois"],
    "garage": ["garage", "atelier", "buanderie"],
    "renovation_complete": ["rénovation complète", "maison entière", "appartement entier", "corps de ferme", "longère", "grange"],
}


def detect_chantier_type(description: str) -> Optional[str]:
    if not description:
        return None
    desc = description.lower()
    for code, keywords in TYPE_PATTERNS.items():
        if any(kw in desc for kw in keywords):
            return code
    return None


def format_type_config_for_ai(config: ChantierTypeConfig) -> str:
    sections = [f"## TYPE DE CHANTIER : {config.icone} {config.nom.upper()}".replace("  ", " "), f"{config.description}\n"]
    if config.questions_specifiques:
        sections.append("### Questions spécifiques à poser :")
        sections += [f"- {q}" for q in config.questions_specifiques]
        sections.append("")
    if config.equipements_suggestibles:
        sections += ["### Équipements à suggérer :", ", ".join(config.equipements_suggestibles), ""]
    if config.risques_courants:
        sections.append("### Risques et vigilance :")
        sections += [f"- {r}" for r in config.risques_courants]
        sections.append("")
    if config.points_attention:
        sections.append("### Points d'attention :")
        sections += [f"- {p}" for p in config.points_attention]
        sections.append("")
    if config.lots_typiques:
        sections += ["### Lots typiques pour ce type de chantier :", " → ".join(config.lots_typiques), ""]
    return "\n".join(sections)


def _match(alerte: AlerteCritique, desc: str) -> bool:
    return any(mot.lower() in desc for mot in (alerte.mots_cles or []))


def check_hors_scope(session: Session, description: str) -> Dict[str, Any]:
    """Alertes de niveau `interdit` dont un mot-clé apparaît dans la description."""
    desc = (description or "").lower()
    alertes = session.exec(select(AlerteCritique).where(AlerteCritique.niveau == "interdit")).all()
    detectees = [
        {"code": a.code, "titre": a.titre, "niveau": a.niveau, "message": a.message_alerte}
        for a in alertes
        if _match(a, desc)
    ]
    if not detectees:
        return {"est_hors_scope": False, "raison": None, "alertes": []}
    return {
        "est_hors_scope": True,
        "raison": " ".join(a["message"] for a in detectees),
        "alertes": detectees,
    }


def check_alertes_critiques(session: Session, description: str) -> List[Dict[str, Any]]:
    desc = (description or "").lower()
    alertes = session.exec(select(AlerteCritique).where(AlerteCritique.niveau == "critique")).all()
    return [{"code": a.code, "titre": a.titre, "message": a.message_alerte} for a in alertes if _match(a, desc)]


class ChantierTypeService:
    """Types de chantier actifs, gardés en mémoire `ttl_seconds`."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self.ttl_seconds = env.SETTINGS_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._cache: Optional[Dict[str, ChantierTypeConfig]] = None
        self._loaded_at = 0.0
        self._lock = threading.Lock()

    def invalidate(self) -> None:
        with self._lock:
            self._cache = None
            self._loaded_at = 0.0

    def _load_all(self) -> Dict[str, ChantierTypeConfig]:
        with self._lock:
            if self._cache is not None and (self._clock() - self._loaded_at) < self.ttl_seconds:
                return self._cache
            try:
                with self._session_factory() as s:
                    rows = s.exec(
                        select(ChantierTypeConfig)
                        .where(ChantierTypeConfig.est_actif == True)  # noqa: E712
                        .order_by(ChantierTypeConfig.ordre)
                    ).all()
            except SQLAlchemyError as e:
                log.error("Erreur chargement types chantier: %s", e)
                return self._cache or {}
            self._cache = {r.code: r for r in rows}
            self._loaded_at = self._clock()
            log.info("%d types de chantier chargés", len(self._cache))
            return self._cache

    def get_chantier_type_config(self, code: str) -> Optional[ChantierTypeConfig]:
        return self._load_all().get(code)

    def get_all_chantier_types(self) -> List[ChantierTypeConfig]:
        return list(self._load_all().values())

    def get_available_type_codes(self) -> List[str]:
        return list(self._load_all().keys())
