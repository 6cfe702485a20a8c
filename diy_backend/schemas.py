# diy_backend/schemas.py
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


# ──────────────────────────────────────────────────────────────────────────────
# Enveloppe commune à toutes les routes
# ──────────────────────────────────────────────────────────────────────────────
class ApiResponse(BaseModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [_dump(v) for v in value]
    if isinstance(value, dict):
        return {k: _dump(v) for k, v in value.items()}
    return value


def ok(data: Any = None) -> ApiResponse:
    return ApiResponse(success=True, data=_dump(data))


def fail(error: str) -> dict:
    return {"success": False, "error": error}


# ──────────────────────────────────────────────────────────────────────────────
# Structures générées par l'IA
# ──────────────────────────────────────────────────────────────────────────────
NiveauRequis = Literal["debutant", "intermediaire", "confirme"]
Difficulte = Literal["facile", "moyen", "difficile"]


class LotGenere(BaseModel):
    ordre: int
    titre: str
    description: str = ""
    code_expertise: str = "generaliste"
    niveau_requis: NiveauRequis = "intermediaire"
    duree_estimee_heures: float = 0
    cout_estime: float = 0
    prerequis_stricts: List[int] = []
    points_attention: Optional[str] = None
    dependances_type: Literal["sequentiel", "parallele"] = "sequentiel"


class AlertePhasage(BaseModel):
    type: Literal["critique", "attention", "conseil"]
    message: str


class ResultatPhasage(BaseModel):
    ready_for_phasage: bool = True
    analyse: str = ""
    lots: List[LotGenere] = Field(min_length=1)
    alertes: List[AlertePhasage] = []
    budget_total_estime: float = 0
    duree_totale_estimee_heures: float = 0


class Materiau(BaseModel):
    nom: str
    quantite: str = ""
    unite: str = ""

    @field_validator("quantite", mode="before")
    @classmethod
    def _quantite_str(cls, v):
        return "" if v is None else str(v)


class EtapeGeneree(BaseModel):
    numero: int
    titre: str
    description: str = ""
    instructions: Optional[str] = None
    duree_estimee_minutes: int = 0
    difficulte: Difficulte = "moyen"
    outils_necessaires: List[str] = []
    materiaux_necessaires: List[Materiau] = []
    precautions: Optional[str] = None
    conseils_pro: Optional[str] = None


class ResultatEtapes(BaseModel):
    etapes: List[EtapeGeneree] = Field(min_length=1)
    duree_totale_estimee_minutes: int = 0
    conseils_generaux: Optional[str] = None


class TacheGeneree(BaseModel):
    # id de la ligne en base, absent pour une tâche générée ou ajoutée
    id: Optional[int] = None
    numero: int
    titre: str
    description: Optional[str] = None
    duree_estimee_minutes: int = 10
    est_critique: bool = False
    outils_necessaires: List[str] = []
    conseils_pro: Optional[str] = None
    statut: Optional[str] = None


class ResultatTaches(BaseModel):
    taches: List[TacheGeneree] = Field(min_length=1)


# ──────────────────────────────────────────────────────────────────────────────
# Requêtes
# ──────────────────────────────────────────────────────────────────────────────
Mode = Literal["preview", "commit"]


class ChantierCreate(BaseModel):
    titre: str = Field(min_length=1)
    description: Optional[str] = None
    type_code: Optional[str] = None
    budget_initial: Optional[float] = None
    duree_estimee_heures: Optional[float] = None
    infos: Dict[str, Any] = {}


class PhasageRequest(BaseModel):
    chantier_id: int = Field(gt=0)
    action: Literal["generate", "save", "reset"] = "generate"
    mode: Mode = "commit"
    infos: Dict[str, Any] = {}
    lots: Optional[List[LotGenere]] = None
    replace: bool = False


class PhasageActionsRequest(BaseModel):
    lots: List[LotGenere]
    content: str


class EtapesGenerateRequest(BaseModel):
    lot_id: int = Field(gt=0)
    mode: Mode = "preview"
    etapes: Optional[List[EtapeGeneree]] = None


class EtapesDraftRequest(BaseModel):
    lot_id: int = Field(gt=0)
    etapes: List[EtapeGeneree]


class EtapesValidateRequest(BaseModel):
    lot_id: int = Field(gt=0)
    etapes: Optional[List[EtapeGeneree]] = None


class EtapesActionsRequest(BaseModel):
    lot_id: int = Field(gt=0)
    content: str


class TachesGenerateRequest(BaseModel):
    etape_id: int = Field(gt=0)
    mode: Mode = "preview"
    taches: Optional[List[TacheGeneree]] = None


class TachesDraftRequest(BaseModel):
    etape_id: int = Field(gt=0)
    taches: List[TacheGeneree]


class TachesValidateRequest(BaseModel):
    etape_id: int = Field(gt=0)
    taches: List[TacheGeneree]


class TachesActionsRequest(BaseModel):
    etape_id: int = Field(gt=0)
    content: str


class EtapeRef(BaseModel):
    etape_id: int = Field(gt=0)


class StatutRequest(BaseModel):
    statut: str = Field(min_length=1)


# ──────────────────────────────────────────────────────────────────────────────
# Expertises
# ──────────────────────────────────────────────────────────────────────────────
class ExpertiseIdentifiee(BaseModel):
    domaine: str
    specialite: str = Field(min_length=1)
    nom_affichage: str
    contexte_resume: str = ""


class ExpertTransition(BaseModel):
    expertise_identifiee: ExpertiseIdentifiee
    ready_for_expert: bool


class PromptExpert(BaseModel):
    code: str
    titre: str
    prompt_text: str
    nom_affichage: str
    is_new: bool


class ExpertiseTransitionRequest(BaseModel):
    content: str
    contexte_conversation: str = ""
    # conversation dont l'expertise active bascule vers l'expert
    conversation_id: Optional[int] = Field(default=None, gt=0)


class DetectExpertiseRequest(BaseModel):
    prompt: str = Field(min_length=1)


class DetectTypeRequest(BaseModel):
    description: str


# ──────────────────────────────────────────────────────────────────────────────
# Paramétrage
# ──────────────────────────────────────────────────────────────────────────────
class SettingUpdate(BaseModel):
    value: Any
    updated_by: Optional[str] = None


class VoiceSettings(BaseModel):
    voiceId: Optional[str] = None
    rate: Optional[float] = None
    emotion: Optional[str] = None


class SttSettings(BaseModel):
    provider: Optional[str] = None
    confidence: Optional[float] = None


class AvatarConfigUpdate(BaseModel):
    quality: Optional[str] = None
    avatarName: Optional[str] = None
    language: Optional[str] = None
    knowledgeId: Optional[str] = None
    activityIdleTimeout: Optional[int] = None
    voice: Optional[VoiceSettings] = None
    sttSettings: Optional[SttSettings] = None


class AvatarParameterPatch(BaseModel):
    id: int
    value: Any


# ──────────────────────────────────────────────────────────────────────────────
# Notes (pense-bêtes) et conversations
# ──────────────────────────────────────────────────────────────────────────────
NoteLevel = Literal["chantier", "travail", "etape", "tache"]
NoteSource = Literal["assistant_ia", "utilisateur"]


class Note(BaseModel):
    id: str
    texte: str
    source: NoteSource = "assistant_ia"
    message_original: Optional[str] = None
    created_at: datetime


class NoteCreate(BaseModel):
    texte: str = Field(min_length=1)
    source: NoteSource = "assistant_ia"
    message_original: Optional[str] = None

    @field_validator("texte")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("texte vide")
        return v


class NoteUpdate(BaseModel):
    texte: str = Field(min_length=1)


ConversationType = Literal["chantier", "travail", "etape", "tache", "aide_ponctuelle", "profil", "general"]


class ConversationOpen(BaseModel):
    user_id: str = Field(min_length=1)
    type: ConversationType = "general"
    chantier_id: Optional[int] = Field(default=None, gt=0)
    travail_id: Optional[int] = Field(default=None, gt=0)
    titre: Optional[str] = None
    # ferme la conversation active du chantier et en ouvre une nouvelle
    nouvelle: bool = False


class MessageIn(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(min_length=1)
    expertise_code: Optional[str] = None
    expertise_nom: Optional[str] = None
    metadata: Dict[str, Any] = {}


class ExpertiseUpdate(BaseModel):
    code: str = Field(min_length=1)
    nom: str = Field(min_length=1)
    source: Literal["auto", "manual"] = "manual"


class DecisionIn(BaseModel):
    description: str = Field(min_length=1)
    categorie: Literal["technique", "materiel", "planning", "securite", "autre"] = "autre"
    validee: bool = False


class ProblemeResoluIn(BaseModel):
    probleme: str = Field(min_length=1)
    solution: str = Field(min_length=1)
    expertise_code: Optional[str] = None


class PointAttentionIn(BaseModel):
    point: str = Field(min_length=1)


class PreferencesBricoleur(BaseModel):
    niveau: Optional[Literal["debutant", "intermediaire", "expert"]] = None
    disponibilites: Optional[str] = None
    outillage: Optional[List[str]] = None
    notes: Optional[str] = None


class ResumeIn(BaseModel):
    resume: str = Field(min_length=1)


class ConversationClose(BaseModel):
    satisfaction: Optional[int] = Field(default=None, ge=1, le=5)
    feedback: Optional[str] = None
