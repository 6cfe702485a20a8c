# diy_backend/services/app_settings_service.py
"""
Paramètres globaux de l'application (table app_settings).

Les settings sont chargés en une requête puis gardés en mémoire pendant
`ttl_seconds`; `invalidate()` force un rechargement (appelé après chaque
mise à jour). Une seule instance par process, créée dans main.create_app.
"""
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from diy_backend.config import settings as env
from diy_backend.models import AppSetting, utcnow

log = logging.getLogger(__name__)

SETTINGS_CATEGORIES = {
    "feature",
    "limite",
    "tarif",
    "config_ia",
    "config_avatar",
    "config_budget",
    "config_expertises",
    "config_chantier",
    "config_optimisation",
    "config_securite",
}

_PLAN_DEFAULT_CHANTIERS = {"free": 2, "basic": 5, "premium": 20}


@dataclass
class _Entry:
    value: Any
    categorie: str
    est_public: bool = False


def _decode(value: Any) -> Any:
    # JSONB stocke déjà des valeurs typées, mais certaines sont des chaînes JSON
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


class AppSettingsService:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        ttl_seconds: Optional[float] = None,
        environment: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self.ttl_seconds = env.SETTINGS_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.environment = environment or env.APP_ENVIRONMENT
        self._clock = clock
        self._cache: Optional[Dict[str, _Entry]] = None
        self._loaded_at = 0.0
        self._lock = threading.Lock()

    # ── cache ────────────────────────────────────────────────────────────────
    def _is_valid(self) -> bool:
        return self._cache is not None and (self._clock() - self._loaded_at) < self.ttl_seconds

    def invalidate(self) -> None:
        with self._lock:
            self._cache = None
            self._loaded_at = 0.0
        log.info("Cache app_settings invalidé")

    def _load_all(self) -> Dict[str, _Entry]:
        with self._lock:
            if self._is_valid():
                return self._cache
            try:
                with self._session_factory() as s:
                    rows = s.exec(
                        select(AppSetting).where(AppSetting.environnement == self.environment)
                    ).all()
            except SQLAlchemyError as e:
                log.error("Erreur chargement app_settings: %s", e)
                return self._cache or {}
            self._cache = {r.key: _Entry(_decode(r.value), r.categorie, bool(r.est_public)) for r in rows}
            self._loaded_at = self._clock()
            log.info("%d settings chargés depuis app_settings", len(self._cache))
            return self._cache

    # ── getters ──────────────────────────────────────────────────────────────
    def get_setting(self, key: str, default: Any = None) -> Any:
        entry = self._load_all().get(key)
        if entry is not None:
            return entry.value
        if default is None:
            log.warning("Setting non trouvé: %s", key)
        return default

    def get_settings(self, keys: Iterable[str]) -> Dict[str, Any]:
        cache = self._load_all()
        return {k: cache[k].value for k in keys if k in cache}

    def get_settings_by_category(self, category: str, public_only: bool = False) -> Dict[str, Any]:
        return {
            k: e.value
            for k, e in self._load_all().items()
            if e.categorie == category and (e.est_public or not public_only)
        }

    def is_public(self, key: str) -> bool:
        entry = self._load_all().get(key)
        return entry is not None and entry.est_public

    def get_default_ia_settings(self) -> Dict[str, Any]:
        s = self.get_settings_by_category("config_ia")
        return {
            "model": s.get("openai_model_default") or env.OPENAI_MODEL,
            "temperature": s.get("openai_temperature_default", 0.4),
            "max_tokens": s.get("openai_max_tokens_default", 2500),
            "prompt_max_length": s.get("prompt_system_max_length", 4000),
            "history_max_messages": s.get("conversation_history_max_messages", 20),
        }

    def get_budget_settings(self) -> Dict[str, Any]:
        s = self.get_settings_by_category("config_budget")
        return {
            "seuil_alerte_pourcent": s.get("budget_seuil_alerte_pourcent", 80),
            "seuil_critique_pourcent": s.get("budget_seuil_critique_pourcent", 95),
            "coefficient_perte": s.get("budget_coefficient_perte_defaut", 0.15),
        }

    def get_limites_for_plan(self, plan: str) -> Dict[str, Any]:
        cache = self._load_all()

        def g(key: str, default: Any) -> Any:
            e = cache.get(key)
            return e.value if e is not None else default

        return {
            "max_chantiers": g(f"limite_chantiers_{plan}", _PLAN_DEFAULT_CHANTIERS.get(plan, 2)),
            "max_conversations_mois": g(f"limite_conversations_mois_{plan}", None),
            "tarif_mensuel": g(f"tarif_plan_{plan}", 0),
        }

    def is_feature_enabled(self, feature_key: str) -> bool:
        full_key = feature_key if feature_key.startswith("feature_") else f"feature_{feature_key}"
        return bool(self.get_setting(full_key, False))

    def get_chantier_settings(self) -> Dict[str, Any]:
        s = self.get_settings_by_category("config_chantier")
        return {
            "duree_max_semaines": s.get("chantier_duree_max_semaines", 52),
            "budget_min_euros": s.get("chantier_budget_min_euros", 100),
            "budget_max_euros": s.get("chantier_budget_max_euros", 50000),
        }

    def get_optimisation_settings(self) -> Dict[str, Any]:
        s = self.get_settings_by_category("config_optimisation")
        return {
            "gain_temps_min_heures": s.get("optimisation_gain_temps_min_heures", 0.5),
            "gain_argent_min_euros": s.get("optimisation_gain_argent_min_euros", 10),
            "max_propositions_actives": s.get("optimisation_max_propositions_actives", 5),
        }

    # ── setters (admin) ──────────────────────────────────────────────────────
    def update_setting(self, key: str, value: Any, updated_by: Optional[str] = None) -> bool:
        """False si la clé n'existe pas ou n'est pas modifiable."""
        with self._session_factory() as s:
            row = s.exec(
                select(AppSetting).where(
                    AppSetting.key == key,
                    AppSetting.environnement == self.environment,
                    AppSetting.est_modifiable == True,  # noqa: E712
                )
            ).first()
            if not row:
                return False
            row.value = value
            row.updated_by = updated_by
            row.updated_at = utcnow()
            s.add(row)
            s.commit()
        self.invalidate()
        log.info("Setting %s mis à jour", key)
        return True
