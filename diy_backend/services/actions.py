# diy_backend/services/actions.py
"""
Actions embarquées dans les réponses de l'assistant.

Format accepté, et seulement celui-ci : un unique bloc ```json ... ```
(ou, sans fence, un unique objet JSON) dont la clé racine est le marqueur
(`etapes_action`, `taches_action`, `phasage_action`). La valeur est une
action ou une liste d'actions :

    {"type": "modifier_etape", "target_id": 2, "changes": {...}, "message": "..."}

Plusieurs blocs marqués, JSON invalide ou forme inattendue -> ParseError,
rien n'est appliqué.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from diy_backend.errors import ParseError
from diy_backend.services.llm_service import FENCED_BLOCK

log = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_LEAD_INS = [
    re.compile(r"Voici (?:le|la|les) (?:JSON|modifications?|mises? à jour)[^:\n]*:?", re.IGNORECASE),
    re.compile(r"J'effectue la modification[^:\n]*:", re.IGNORECASE),
    re.compile(r"Modifications? effectuées?[^:\n]*:", re.IGNORECASE),
]


class Action(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str
    target_id: Optional[int] = None
    changes: Dict[str, Any] = {}
    message: str = ""


@dataclass
class ExtractedActions:
    actions: List[Action]
    clean_content: str
    raw: Dict[str, Any] = field(default_factory=dict)


def find_json_object(content: str, marker_token: str) -> Optional[tuple]:
    """(start, end, objet) du plus grand objet JSON contenant le marqueur."""
    marker_pos = content.find(marker_token)
    decoder = json.JSONDecoder()
    for start in (i for i, ch in enumerate(content[:marker_pos]) if ch == "{"):
        try:
            obj, end = decoder.raw_decode(content, start)
        except json.JSONDecodeError:
            continue
        if end > marker_pos and isinstance(obj, dict):
            return start, end, obj
    return None


def _clean(content: str, start: int, end: int, actions: List[Action]) -> str:
    text = (content[:start] + content[end:]).strip()
    for pattern in _LEAD_INS:
        text = pattern.sub("", text)
    text = text.strip()
    if len(text) < 5:
        last = actions[-1].message if actions else ""
        text = last or "Modification effectuée !"
    return text


def extract_action_block(content: str, marker: str) -> Optional[ExtractedActions]:
    """
    Retourne None si le texte ne contient aucune action `marker`.
    Lève ParseError si le bloc est présent mais inexploitable.
    """
    content = content or ""
    token = f'"{marker}"'
    if token not in content:
        return None

    fenced = [m for m in FENCED_BLOCK.finditer(content) if token in m.group(1)]
    if len(fenced) > 1:
        raise ParseError(f"Plusieurs blocs {marker} dans la réponse")
    if fenced:
        m = fenced[0]
        start, end = m.span()
        try:
            data = json.loads(m.group(1))
        except json.JSONDecodeError as e:
            raise ParseError(f"JSON {marker} invalide: {e.msg}")
    else:
        if content.count(token) > 1:
            raise ParseError(f"Plusieurs blocs {marker} dans la réponse")
        found = find_json_object(content, token)
        if not found:
            raise ParseError(f"JSON {marker} invalide")
        start, end, data = found

    if not isinstance(data, dict) or marker not in data:
        raise ParseError(f"Clé {marker} absente du bloc JSON")
    payload = data[marker]
    items = payload if isinstance(payload, list) else [payload]
    if not items or not all(isinstance(i, dict) for i in items):
        raise ParseError(f"Forme de {marker} invalide")
    try:
        actions = [Action.model_validate(i) for i in items]
    except PydanticValidationError as e:
        raise ParseError(f"Forme de {marker} invalide: {str(e).splitlines()[0]}")

    log.info("%d action(s) %s détectée(s)", len(actions), marker)
    return ExtractedActions(actions=actions, clean_content=_clean(content, start, end, actions), raw=data)


# ──────────────────────────────────────────────────────────────────────────────
# Application
# ──────────────────────────────────────────────────────────────────────────────
Handler = Callable[[List[T], Action], List[T]]


def apply_actions(items: Sequence[T], actions: Sequence[Action], handlers: Dict[str, Handler], label: str) -> List[T]:
    """
    Applique les actions dans l'ordre et retourne une nouvelle liste.
    `items` n'est jamais modifiée. Type inconnu : ignoré (warning).
    """
    current = list(items)
    for action in actions:
        handler = handlers.get(action.type)
        if handler is None:
            log.warning("[%s] type d'action inconnu ignoré: %s", label, action.type)
            continue
        try:
            current = handler(current, action)
        except PydanticValidationError as e:
            raise ParseError(f"Action {action.type} invalide: {str(e).splitlines()[0]}")
        except (TypeError, ValueError) as e:
            raise ParseError(f"Action {action.type} invalide: {e}")
    return current


def find_index(items: Sequence[BaseModel], attr: str, value: Any) -> int:
    for i, item in enumerate(items):
        if getattr(item, attr) == value:
            return i
    return -1


def renumber(items: Sequence[T], attr: str) -> List[T]:
    return [item.model_copy(update={attr: i + 1}) for i, item in enumerate(items)]


def updated(item: T, changes: Dict[str, Any]) -> T:
    """Copie validée de `item` avec `changes` (l'id de ligne ne change jamais)."""
    changes = {k: v for k, v in changes.items() if k != "id"}
    return type(item).model_validate({**item.model_dump(), **changes})


def clamp_position(position: Optional[int], size: int) -> int:
    """Position 1-based -> index d'insertion (fin de liste si absente)."""
    if position is None:
        return size
    return max(0, min(int(position) - 1, size))


def merge_unique(values: Sequence[Sequence[Any]]) -> List[Any]:
    out: List[Any] = []
    for seq in values:
        for v in seq:
            if v not in out:
                out.append(v)
    return out
