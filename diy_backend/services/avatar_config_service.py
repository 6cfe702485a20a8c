# diy_backend/services/avatar_config_service.py
"""Paramètres de l'avatar Neo (table avatar_configuration)."""
import logging
from typing import Any, List, Optional, Tuple

from sqlmodel import Session, select

from diy_backend.errors import NotFoundError, ValidationError
from diy_backend.models import AvatarConfiguration, utcnow
from diy_backend.schemas import AvatarConfigUpdate

log = logging.getLogger(__name__)


def list_parameters(session: Session) -> List[AvatarConfiguration]:
    return list(
        session.exec(
            select(AvatarConfiguration).order_by(AvatarConfiguration.category, AvatarConfiguration.parameter_name)
        ).all()
    )


def get_parameter(session: Session, key: str) -> AvatarConfiguration:
    row = session.exec(select(AvatarConfiguration).where(AvatarConfiguration.parameter_key == key)).first()
    if not row:
        raise NotFoundError(f"Paramètre {key} introuvable")
    return row


def _to_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def validate_value(param: AvatarConfiguration, value: Any) -> str:
    """Valeur normalisée (texte) ou ValidationError."""
    text = _to_str(value)
    if param.parameter_type == "number":
        try:
            number = float(text)
        except ValueError:
            raise ValidationError(f"{param.parameter_key}: nombre attendu")
        if param.min_value is not None and number < param.min_value:
            raise ValidationError(f"{param.parameter_key}: minimum {param.min_value}")
        if param.max_value is not None and number > param.max_value:
            raise ValidationError(f"{param.parameter_key}: maximum {param.max_value}")
    elif param.parameter_type == "boolean":
        text = text.lower()
        if text not in ("true", "false"):
            raise ValidationError(f"{param.parameter_key}: booléen attendu")
    if param.allowed_values and text not in param.allowed_values:
        raise ValidationError(f"{param.parameter_key}: valeurs autorisées {', '.join(param.allowed_values)}")
    return text


def flatten_config(config: AvatarConfigUpdate) -> List[Tuple[str, Any]]:
    """Config avatar imbriquée -> [(parameter_key, valeur)]."""
    updates: List[Tuple[str, Any]] = []
    if config.quality:
        updates.append(("quality", config.quality.lower()))
    for key in ("avatarName", "language", "knowledgeId"):
        value = getattr(config, key)
        if value:
            updates.append((key, value))
    if config.activityIdleTimeout is not None:
        updates.append(("activityIdleTimeout", config.activityIdleTimeout))
    if config.voice:
        if config.voice.voiceId:
            updates.append(("voice.voiceId", config.voice.voiceId))
        if config.voice.rate is not None:
            updates.append(("voice.rate", config.voice.rate))
        if config.voice.emotion:
            updates.append(("voice.emotion", config.voice.emotion))
    if config.sttSettings:
        if config.sttSettings.provider:
            updates.append(("sttSettings.provider", config.sttSettings.provider))
        if config.sttSettings.confidence is not None:
            updates.append(("sttSettings.confidence", config.sttSettings.confidence))
    return updates


def update_from_config(session: Session, config: AvatarConfigUpdate) -> int:
    """Mise à jour groupée : tout est validé avant d'écrire, un seul commit."""
    now = utcnow()
    staged = []
    for key, value in flatten_config(config):
        row = session.exec(select(AvatarConfiguration).where(AvatarConfiguration.parameter_key == key)).first()
        if not row:
            log.warning("Paramètre avatar inconnu ignoré: %s", key)
            continue
        staged.append((row, validate_value(row, value)))
    for row, text in staged:
        row.current_value = text
        row.updated_at = now
        session.add(row)
    session.commit()
    log.info("%d paramètres avatar mis à jour", len(staged))
    return len(staged)


def update_parameter(session: Session, param_id: int, value: Any) -> AvatarConfiguration:
    if value is None:
        raise ValidationError("ID et valeur requis")
    row = session.get(AvatarConfiguration, param_id)
    if not row:
        raise NotFoundError("Paramètre introuvable")
    if not row.is_user_editable:
        raise ValidationError(f"{row.parameter_key} n'est pas modifiable")
    row.current_value = validate_value(row, value)
    row.updated_at = utcnow()
    session.add(row)
    session.commit()
    session.refresh(row)
    log.info("Paramètre %s mis à jour: %s", row.parameter_key, row.current_value)
    return row


def reset_to_defaults(session: Session) -> int:
    rows = list_parameters(session)
    now = utcnow()
    for row in rows:
        row.current_value = row.default_value
        row.updated_at = now
        session.add(row)
    session.commit()
    log.info("Configuration avatar réinitialisée (%d paramètres)", len(rows))
    return len(rows)


def effective_value(param: AvatarConfiguration) -> Optional[str]:
    return param.current_value if param.current_value is not None else param.default_value
