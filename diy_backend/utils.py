# diy_backend/utils.py
# Utilitaires partagés entre Neo et DIY
import re
import unicodedata
from datetime import date, datetime


def format_date(value: str | date | datetime) -> str:
    """Date au format français jj/mm/aaaa (accepte une chaîne ISO)."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return value.strftime("%d/%m/%Y")


def generate_slug(text: str) -> str:
    s = unicodedata.normalize("NFD", (text or "").lower())
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = re.sub(r"[^a-z0-9]+", "-", s)
    return s.strip("-")


def round_half_up(x: float) -> int:
    # round() de Python arrondit au pair : 12.5 -> 12
    return int(x + 0.5) if x >= 0 else -int(-x + 0.5)
