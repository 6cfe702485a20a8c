# tests/test_utils.py
from datetime import date

import pytest
from sqlmodel import Session

from diy_backend.errors import ParseError
from diy_backend.models import PromptLibrary
from diy_backend.services.llm_service import generate_json, parse_json_object
from diy_backend.services.prompt_service import fill_template, load_prompt_text
from diy_backend.utils import format_date, generate_slug, round_half_up
from tests.conftest import FakeLLM, persist


@pytest.mark.parametrize("value,expected", [(12.5, 13), (62.5, 63), (33.33, 33), (0.49, 0), (100, 100)])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected


def test_format_date():
    assert format_date(date(2024, 3, 9)) == "09/03/2024"
    assert format_date("2024-03-09T10:00:00Z") == "09/03/2024"


def test_generate_slug():
    assert generate_slug("  Électricité & Tableau ") == "electricite-tableau"


class TestParseJson:
    def test_fenced_with_trailing_comma(self):
        assert parse_json_object('```json\n{"a": [1, 2,],}\n```') == {"a": [1, 2]}

    def test_fenced_block_inside_prose(self):
        content = 'Voici le plan :\n```json\n{"lots": [{"titre": “Plomberie”}]}\n```\nÀ bientôt {:}'

        assert parse_json_object(content) == {"lots": [{"titre": "Plomberie"}]}

    def test_embedded_in_text(self):
        assert parse_json_object('Voici : {"ok": true} merci') == {"ok": True}

    def test_not_an_object(self):
        with pytest.raises(ParseError):
            parse_json_object("[1, 2]")

    def test_nothing(self):
        with pytest.raises(ParseError):
            parse_json_object("désolé")


def test_generate_json_passes_model_and_retries():
    llm = FakeLLM()
    llm.queue("rien", {"valeur": 3})

    out = generate_json(llm, "sys", "user", lambda d: d["valeur"], model="gpt-x", attempts=2, label="test")

    assert out == 3
    assert [c["model"] for c in llm.calls] == ["gpt-x", "gpt-x"]


class TestPrompts:
    def test_fill_template(self):
        assert fill_template("A {{X}} B {{Y}}", {"X": "1", "Y": None}) == "A 1 B "

    def test_library_overrides_default(self, engine):
        persist(engine, PromptLibrary(code="system_etapes", titre="Étapes", prompt_text="Prompt maison"))
        with Session(engine) as s:
            assert load_prompt_text(s, "system_etapes", "défaut") == "Prompt maison"
            assert load_prompt_text(s, "system_taches", "défaut") == "défaut"

    def test_inactive_prompt_ignored(self, engine):
        persist(engine, PromptLibrary(code="system_phasage", titre="P", prompt_text="Vieux", est_actif=False))
        with Session(engine) as s:
            assert load_prompt_text(s, "system_phasage", "défaut") == "défaut"
