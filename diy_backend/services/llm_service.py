# diy_backend/services/llm_service.py
import json
import logging
import re
from typing import Any, Callable, Dict, Optional, TypeVar

import openai
from openai import OpenAI
from pydantic import ValidationError as PydanticValidationError

from diy_backend.config import settings
from diy_backend.errors import GenerationError, ParseError, UpstreamError

log = logging.getLogger(__name__)

T = TypeVar("T")

# bloc ```json ... ``` (ou ``` ... ```) dans une réponse du modèle
FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_QUOTES = {"“": '"', "”": '"', "’": "'"}


def strip_fences(content: str) -> str:
    """Contenu du premier bloc fencé s'il existe, sinon le texte entier, normalisé."""
    txt = (content or "").strip()
    m = FENCED_BLOCK.search(txt)
    if m:
        txt = m.group(1)
    txt = _TRAILING_COMMA.sub(r"\1", txt)
    for curly, plain in _QUOTES.items():
        txt = txt.replace(curly, plain)
    return txt.strip()


def parse_json_object(content: str) -> Dict[str, Any]:
    """
    Parse un objet JSON renvoyé par le modèle.
    - Ne garde que le contenu du bloc ```json``` s'il y en a un
    - Fallback: extrait le premier { ... dernier }
    Lève ParseError si rien d'exploitable.
    """
    txt = strip_fences(content)
    try:
        data = json.loads(txt)
    except json.JSONDecodeError:
        start = txt.find("{")
        end = txt.rfind("}")
        if start == -1 or end <= start:
            raise ParseError("Pas de JSON trouvé dans la réponse")
        try:
            data = json.loads(txt[start:end + 1])
        except json.JSONDecodeError as e:
            raise ParseError(f"JSON invalide: {e.msg}")
    if not isinstance(data, dict):
        raise ParseError("Objet JSON attendu")
    return data


class LLMClient:
    """
    Handle vers l'API de complétion. Construit une fois au démarrage
    (main.create_app) puis injecté dans les routes.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        client: Optional[OpenAI] = None,
    ):
        self.model = model or settings.OPENAI_MODEL
        self._client = client or OpenAI(
            api_key=api_key if api_key is not None else settings.OPENAI_API_KEY,
            timeout=timeout or settings.OPENAI_TIMEOUT_SECONDS,
            max_retries=settings.OPENAI_MAX_RETRIES if max_retries is None else max_retries,
        )

    def complete(
        self,
        system: str,
        user: str,
        *,
        model: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 2000,
        json_mode: bool = False,
    ) -> str:
        kwargs: Dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        model = model or self.model
        log.info("Appel OpenAI model=%s prompt=%d car.", model, len(system) + len(user))
        try:
            resp = self._client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs,
            )
        except openai.APITimeoutError:
            log.error("OpenAI timeout (model=%s)", model)
            raise UpstreamError("Le service IA n'a pas répondu à temps", timeout=True)
        except openai.APIError as e:
            # le message d'erreur brut du fournisseur n'est jamais renvoyé au client
            log.error("OpenAI erreur (model=%s): %s", model, type(e).__name__)
            raise UpstreamError("Le service IA est indisponible")
        return (resp.choices[0].message.content or "") if resp.choices else ""


def generate_json(
    llm: LLMClient,
    system: str,
    user: str,
    validate: Callable[[Dict[str, Any]], T],
    *,
    model: Optional[str] = None,
    temperature: float = 0.3,
    max_tokens: int = 4000,
    attempts: Optional[int] = None,
    label: str = "generation",
) -> T:
    """
    complete -> parse -> validate, avec plusieurs tentatives si le JSON est
    inexploitable. Les erreurs d'appel (UpstreamError) ne sont pas rejouées ici.
    """
    attempts = attempts or settings.LLM_MAX_ATTEMPTS
    last_error = ""
    for attempt in range(1, attempts + 1):
        raw = llm.complete(system, user, model=model, temperature=temperature, max_tokens=max_tokens)
        try:
            return validate(parse_json_object(raw))
        except (ParseError, PydanticValidationError, ValueError) as e:
            last_error = e.message if isinstance(e, ParseError) else str(e).splitlines()[0]
            log.warning("[%s] tentative %s échouée: %s", label, attempt, last_error)
    raise GenerationError(f"Réponse IA inexploitable ({label}): {last_error}")

