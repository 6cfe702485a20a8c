# diy_backend/routers/settings.py
from fastapi import APIRouter, Depends

from diy_backend.dependencies import get_app_settings
from diy_backend.errors import NotFoundError
from diy_backend.schemas import SettingUpdate, ok
from diy_backend.services.app_settings_service import AppSettingsService

router = APIRouter(prefix="/settings", tags=["settings"])

_MISSING = object()


@router.get("/ia")
def ia_settings(app_settings: AppSettingsService = Depends(get_app_settings)):
    return ok(app_settings.get_default_ia_settings())


@router.get("/limites/{plan}")
def limites(plan: str, app_settings: AppSettingsService = Depends(get_app_settings)):
    return ok(app_settings.get_limites_for_plan(plan))


@router.get("/features/{feature_key}")
def feature(feature_key: str, app_settings: AppSettingsService = Depends(get_app_settings)):
    return ok({"feature": feature_key, "enabled": app_settings.is_feature_enabled(feature_key)})


@router.get("/category/{categorie}")
def by_category(categorie: str, app_settings: AppSettingsService = Depends(get_app_settings)):
    return ok(app_settings.get_settings_by_category(categorie, public_only=True))


@router.post("/invalidate")
def invalidate(app_settings: AppSettingsService = Depends(get_app_settings)):
    app_settings.invalidate()
    return ok({"invalidated": True})


@router.get("/{key}")
def get_setting(key: str, app_settings: AppSettingsService = Depends(get_app_settings)):
    # les clés non publiques ne sont lisibles que via les getters typés
    value = app_settings.get_setting(key, _MISSING)
    if value is _MISSING or not app_settings.is_public(key):
        raise NotFoundError(f"Paramètre {key} introuvable")
    return ok({"key": key, "value": value})


@router.patch("/{key}")
def update_setting(key: str, body: SettingUpdate, app_settings: AppSettingsService = Depends(get_app_settings)):
    if not app_settings.update_setting(key, body.value, body.updated_by):
        raise NotFoundError(f"Paramètre {key} introuvable ou non modifiable")
    return ok({"key": key, "value": app_settings.get_setting(key)})
