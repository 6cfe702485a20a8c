# tests/test_expertise.py
import pytest
from sqlmodel import Session, select

from diy_backend.errors import ValidationError
from diy_backend.models import PromptLibrary
from diy_backend.schemas import ExpertiseIdentifiee
from diy_backend.services.expertise_service import (
    extract_expert_transition,
    generate_prompt_code,
    get_or_create_expert_prompt,
    is_user_confirming_expert,
)
from tests.conftest import persist

TRANSITION = (
    "Je te mets en relation avec notre spécialiste.\n"
    "```json\n"
    '{"ready_for_expert": true, "expertise_identifiee": {"domaine": "électricité", '
    '"specialite": "Tableau électrique", "nom_affichage": "Marc, électricien", '
    '"contexte_resume": "Remplacer un tableau vétuste"}}\n'
    "```"
)


def _prompts(engine):
    with Session(engine) as s:
        return s.exec(select(PromptLibrary)).all()


class TestTransitionRoute:
    def test_marker_absent_does_nothing(self, client, engine, llm):
        res = client.post("/api/expertise/transition", json={"content": "Pour poser du parquet, commence par..."})

        assert res.json() == {"success": True, "data": {"ready_for_expert": False}, "error": None}
        assert llm.calls == []
        assert _prompts(engine) == []

    def test_generates_once_then_reuses(self, client, engine, llm):
        llm.queue({"prompt_text": "Tu es Marc, électricien."})

        first = client.post("/api/expertise/transition", json={"content": TRANSITION}).json()["data"]
        second = client.post("/api/expertise/transition", json={"content": TRANSITION}).json()["data"]

        assert first["ready_for_expert"] is True
        assert first["prompt"]["code"] == "expert_tableau_electrique"
        assert first["prompt"]["is_new"] is True
        assert second["prompt"]["is_new"] is False
        assert second["prompt"]["prompt_text"] == "Tu es Marc, électricien."
        assert len(llm.calls) == 1
        assert len(_prompts(engine)) == 1

    def test_existing_prompt_skips_generation(self, client, engine, llm):
        persist(engine, PromptLibrary(code="expert_tableau_electrique", titre="Expert", prompt_text="Déjà là"))

        data = client.post("/api/expertise/transition", json={"content": TRANSITION}).json()["data"]

        assert data["prompt"]["prompt_text"] == "Déjà là"
        assert llm.calls == []

    def test_generation_failure_persists_nothing(self, client, engine, llm):
        llm.queue({"prompt_text": ""}, "pas de json")

        res = client.post("/api/expertise/transition", json={"content": TRANSITION})

        assert res.status_code == 502
        assert _prompts(engine) == []

    def test_unusable_specialite_is_bad_request(self, client, engine, llm):
        content = (
            '{"ready_for_expert": true, "expertise_identifiee": '
            '{"domaine": "divers", "specialite": "!!", "nom_affichage": "Paul"}}'
        )

        res = client.post("/api/expertise/transition", json={"content": content})

        assert res.status_code == 400
        assert llm.calls == []
        assert _prompts(engine) == []

    def test_empty_specialite_ignored(self, client, llm):
        content = '{"ready_for_expert": true, "expertise_identifiee": {"domaine": "a", "specialite": "", "nom_affichage": "c"}}'

        res = client.post("/api/expertise/transition", json={"content": content})

        assert res.json()["data"] == {"ready_for_expert": False}
        assert llm.calls == []


class TestDetection:
    def test_bare_json(self):
        content = (
            'Parfait. {"ready_for_expert": true, "expertise_identifiee": '
            '{"domaine": "plomberie", "specialite": "Chauffe-eau", "nom_affichage": "Léa"}}'
        )

        transition = extract_expert_transition(content)

        assert transition.expertise_identifiee.specialite == "Chauffe-eau"
        assert transition.expertise_identifiee.contexte_resume == ""

    def test_not_ready(self):
        content = '{"ready_for_expert": false, "expertise_identifiee": {"domaine": "a", "specialite": "b", "nom_affichage": "c"}}'

        assert extract_expert_transition(content) is None

    def test_incomplete_expertise(self):
        assert extract_expert_transition('{"ready_for_expert": true, "expertise_identifiee": {"domaine": "a"}}') is None

    @pytest.mark.parametrize("message", ["oui", "Ok !", "c'est parti", "Allons-y", "👍"])
    def test_confirmations(self, message):
        assert is_user_confirming_expert(message)

    @pytest.mark.parametrize("message", ["non", "plus tard", "je ne sais pas"])
    def test_non_confirmations(self, message):
        assert not is_user_confirming_expert(message)

    def test_prompt_code(self):
        assert generate_prompt_code("Pose de Carrelage mural") == "expert_pose_de_carrelage_mural"

    def test_empty_specialite(self, engine, llm):
        expertise = ExpertiseIdentifiee(domaine="x", specialite="!!", nom_affichage="X")

        with Session(engine) as s, pytest.raises(ValidationError):
            get_or_create_expert_prompt(s, llm, expertise)
        assert llm.calls == []


class TestDetectExpertise:
    def test_classification(self, client, llm):
        llm.queue({"domaine": "plomberie", "specialite": "fuite", "confiance": 0.9})

        res = client.post("/api/detect-expertise", json={"prompt": "Mon robinet fuit"})

        assert res.json()["data"]["domaine"] == "plomberie"
        assert llm.calls[0]["max_tokens"] == 150
        assert llm.calls[0]["user"] == "Mon robinet fuit"

    def test_empty_prompt(self, client, llm):
        res = client.post("/api/detect-expertise", json={"prompt": ""})

        assert res.status_code == 400
        assert llm.calls == []
