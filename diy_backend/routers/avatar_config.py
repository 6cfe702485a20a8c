# diy_backend/routers/avatar_config.py
from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from diy_backend.dependencies import get_session
from diy_backend.errors import ValidationError
from diy_backend.schemas import AvatarConfigUpdate, AvatarParameterPatch, ok
from diy_backend.services import avatar_config_service

router = APIRouter(prefix="/avatar-config", tags=["avatar-config"])


@router.get("")
def get_config(key: Optional[str] = None, session: Session = Depends(get_session)):
    if key:
        return ok(avatar_config_service.get_parameter(session, key))
    return ok(avatar_config_service.list_parameters(session))


@router.put("")
def put_config(body: AvatarConfigUpdate, session: Session = Depends(get_session)):
    count = avatar_config_service.update_from_config(session, body)
    return ok({"updated": count})


@router.patch("")
def patch_parameter(body: AvatarParameterPatch, session: Session = Depends(get_session)):
    return ok(avatar_config_service.update_parameter(session, body.id, body.value))


@router.post("")
def post_action(action: Optional[str] = None, session: Session = Depends(get_session)):
    if action != "reset":
        raise ValidationError("Action non reconnue")
    return ok({"reset": avatar_config_service.reset_to_defaults(session)})
