# diy_backend/config.py
import os
from dotenv import load_dotenv

load_dotenv()  # utile en local; en prod les variables viennent de l'environnement


def _bool(value: str) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # OpenAI
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    OPENAI_TIMEOUT_SECONDS: float = float(os.getenv("OPENAI_TIMEOUT_SECONDS", 60))
    OPENAI_MAX_RETRIES: int = int(os.getenv("OPENAI_MAX_RETRIES", 2))
    # tentatives de génération quand le JSON renvoyé est inexploitable
    LLM_MAX_ATTEMPTS: int = int(os.getenv("LLM_MAX_ATTEMPTS", 2))

    # Base de données
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./diy.db")
    SQL_ECHO: bool = _bool(os.getenv("SQL_ECHO", "false"))

    # app_settings
    SETTINGS_CACHE_TTL_SECONDS: float = float(os.getenv("SETTINGS_CACHE_TTL_SECONDS", 300))
    APP_ENVIRONMENT: str = os.getenv("APP_ENVIRONMENT", "production")

    # Logs
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Frontend
    ALLOWED_ORIGINS: list[str] = [
        o.strip()
        for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
        if o.strip()
    ]


settings = Settings()
