# diy_backend/models.py
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _json(nullable: bool = True) -> Column:
    # JSONB en prod (Postgres), JSON générique ailleurs (tests SQLite)
    return Column(JSON().with_variant(JSONB(), "postgresql"), nullable=nullable)


# ──────────────────────────────────────────────────────────────────────────────
# Hiérarchie chantier → lots (travaux) → étapes → tâches
# ──────────────────────────────────────────────────────────────────────────────
class Chantier(SQLModel, table=True):
    __tablename__ = "chantiers"

    id: Optional[int] = Field(default=None, primary_key=True)
    titre: str
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    statut: str = Field(default="brouillon")  # "brouillon" | "en_cours" | "termine"
    type_code: Optional[str] = Field(default=None, index=True)
    budget_initial: Optional[float] = None
    duree_estimee_heures: Optional[float] = None
    # informations collectées pendant l'entretien (surface, compétences, réseaux…)
    infos: Dict[str, Any] = Field(default_factory=dict, sa_column=_json())
    progression: int = Field(default=0)
    notes: List[Dict[str, Any]] = Field(default_factory=list, sa_column=_json())
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Lot(SQLModel, table=True):
    __tablename__ = "travaux"

    id: Optional[int] = Field(default=None, primary_key=True)
    chantier_id: int = Field(foreign_key="chantiers.id", index=True)
    ordre: int
    titre: str
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    code_expertise: str = Field(default="generaliste")
    niveau_requis: str = Field(default="intermediaire")  # debutant | intermediaire | confirme
    niveau_difficulte: int = Field(default=2)
    duree_estimee_heures: float = Field(default=0)
    cout_estime: float = Field(default=0)
    prerequis_stricts: List[int] = Field(default_factory=list, sa_column=_json())
    points_attention: Optional[str] = None
    dependances_type: str = Field(default="sequentiel")  # sequentiel | parallele
    statut: str = Field(default="a_venir")
    progression: int = Field(default=0)
    notes: List[Dict[str, Any]] = Field(default_factory=list, sa_column=_json())
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Etape(SQLModel, table=True):
    __tablename__ = "etapes"

    id: Optional[int] = Field(default=None, primary_key=True)
    lot_id: int = Field(foreign_key="travaux.id", index=True)
    numero: int
    ordre: int
    titre: str
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    instructions: Optional[str] = Field(default=None, sa_column=Column(Text))
    duree_estimee_minutes: int = Field(default=0)
    difficulte: str = Field(default="moyen")  # facile | moyen | difficile
    outils_necessaires: List[str] = Field(default_factory=list, sa_column=_json())
    materiaux_necessaires: List[Dict[str, Any]] = Field(default_factory=list, sa_column=_json())
    precautions: Optional[str] = None
    conseils_pro: Optional[str] = None
    statut: str = Field(default="brouillon", index=True)  # brouillon | à_venir | en_cours | terminée
    progression: int = Field(default=0)
    notes: List[Dict[str, Any]] = Field(default_factory=list, sa_column=_json())
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Tache(SQLModel, table=True):
    __tablename__ = "taches"

    id: Optional[int] = Field(default=None, primary_key=True)
    etape_id: int = Field(foreign_key="etapes.id", index=True)
    numero: int
    ordre: int
    titre: str
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    statut: str = Field(default="brouillon", index=True)  # brouillon | à_faire | terminée
    duree_estimee_minutes: int = Field(default=10)
    duree_reelle_minutes: Optional[int] = None
    est_critique: bool = Field(default=False)
    outils_necessaires: List[str] = Field(default_factory=list, sa_column=_json())
    conseils_pro: Optional[str] = None
    notes: List[Dict[str, Any]] = Field(default_factory=list, sa_column=_json())
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


# ──────────────────────────────────────────────────────────────────────────────
# Conversations avec l'assistant
# ──────────────────────────────────────────────────────────────────────────────
class Conversation(SQLModel, table=True):
    __tablename__ = "conversations"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    chantier_id: Optional[int] = Field(default=None, foreign_key="chantiers.id", index=True)
    travail_id: Optional[int] = None
    type: str = Field(default="general")  # chantier | travail | etape | tache | aide_ponctuelle | profil | general
    titre: Optional[str] = None
    code_expertise_actuelle: Optional[str] = None
    nom_expertise_actuelle: Optional[str] = None
    expertise_historique: List[Dict[str, Any]] = Field(default_factory=list, sa_column=_json())
    messages: List[Dict[str, Any]] = Field(default_factory=list, sa_column=_json())
    nombre_messages: int = Field(default=0)
    # décisions, problèmes résolus, points d'attention, préférences, résumé
    journal: Dict[str, Any] = Field(default_factory=dict, sa_column=_json())
    statut: str = Field(default="active", index=True)  # active | closed | archived
    satisfaction_user: Optional[int] = None
    feedback_user: Optional[str] = None
    derniere_activite: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    closed_at: Optional[datetime] = None


# ──────────────────────────────────────────────────────────────────────────────
# Référentiels (règles, alertes, prompts, types de chantier)
# ──────────────────────────────────────────────────────────────────────────────
class ReglePhasage(SQLModel, table=True):
    __tablename__ = "regles_phasage"

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(sa_column=Column(String, unique=True, nullable=False))
    titre: str
    type_regle: str  # dependance | alerte | conseil | interdit
    description: str = ""
    message_ia: Optional[str] = None
    categorie: Optional[str] = None
    priorite: int = Field(default=100)
    est_active: bool = Field(default=True)


class AlerteCritique(SQLModel, table=True):
    __tablename__ = "alertes_critiques"

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(sa_column=Column(String, unique=True, nullable=False))
    titre: str
    niveau: str  # delicat | critique | interdit
    message_alerte: str
    mots_cles: List[str] = Field(default_factory=list, sa_column=_json())


class PromptLibrary(SQLModel, table=True):
    __tablename__ = "prompts_library"

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(sa_column=Column(String, unique=True, index=True, nullable=False))
    titre: str
    categorie: str = Field(default="system")
    prompt_text: str = Field(sa_column=Column(Text, nullable=False))
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list, sa_column=_json())
    est_actif: bool = Field(default=True)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    model: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class ChantierTypeConfig(SQLModel, table=True):
    __tablename__ = "chantier_types_config"

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(sa_column=Column(String, unique=True, nullable=False))
    nom: str
    description: str = ""
    icone: str = ""
    questions_specifiques: List[str] = Field(default_factory=list, sa_column=_json())
    equipements_suggestibles: List[str] = Field(default_factory=list, sa_column=_json())
    lots_typiques: List[str] = Field(default_factory=list, sa_column=_json())
    risques_courants: List[str] = Field(default_factory=list, sa_column=_json())
    points_attention: List[str] = Field(default_factory=list, sa_column=_json())
    expertises_courantes: List[str] = Field(default_factory=list, sa_column=_json())
    ordre: int = Field(default=0)
    est_actif: bool = Field(default=True)


# ──────────────────────────────────────────────────────────────────────────────
# Paramétrage
# ──────────────────────────────────────────────────────────────────────────────
class AppSetting(SQLModel, table=True):
    __tablename__ = "app_settings"

    id: Optional[int] = Field(default=None, primary_key=True)
    key: str = Field(sa_column=Column(String, unique=True, index=True, nullable=False))
    value: Any = Field(default=None, sa_column=_json())
    categorie: str
    description: Optional[str] = None
    value_type: str = Field(default="string")  # string | number | boolean | json
    est_public: bool = Field(default=False)
    est_modifiable: bool = Field(default=True)
    environnement: str = Field(default="production")
    updated_by: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)


class AvatarConfiguration(SQLModel, table=True):
    __tablename__ = "avatar_configuration"

    id: Optional[int] = Field(default=None, primary_key=True)
    category: str
    parameter_name: str
    parameter_key: str = Field(sa_column=Column(String, unique=True, nullable=False))
    parameter_type: str = Field(default="string")  # string | number | boolean
    default_value: Optional[str] = None
    current_value: Optional[str] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    allowed_values: Optional[List[str]] = Field(default=None, sa_column=_json())
    description: str = ""
    is_user_editable: bool = Field(default=True)
    requires_restart: bool = Field(default=False)
    updated_at: datetime = Field(default_factory=utcnow)
