# tests/test_phasage.py
from sqlmodel import Session, select

from diy_backend.models import AppSetting, Chantier, Etape, Lot, ReglePhasage
from diy_backend.services import phasage_service
from diy_backend.services.phasage_service import format_regles_for_prompt
from tests.conftest import fetch, persist

PHASAGE = {
    "ready_for_phasage": True,
    "analyse": "Salle de bain de 6 m² à rénover entièrement.",
    "lots": [
        {"ordre": 2, "titre": "Plomberie", "code_expertise": "plomberie", "cout_estime": 400, "duree_estimee_heures": 12},
        {"ordre": 1, "titre": "Démolition", "code_expertise": "demolition", "niveau_requis": "debutant", "cout_estime": 100},
    ],
    "alertes": [{"type": "attention", "message": "Couper l'eau avant dépose"}],
    "budget_total_estime": 500,
    "duree_totale_estimee_heures": 20,
}


def _lots(engine, chantier_id):
    with Session(engine) as s:
        return s.exec(select(Lot).where(Lot.chantier_id == chantier_id).order_by(Lot.ordre)).all()


def _spy_save(monkeypatch):
    calls = []
    original = phasage_service.save_lots

    def spy(*args, **kwargs):
        calls.append(args)
        return original(*args, **kwargs)

    monkeypatch.setattr(phasage_service, "save_lots", spy)
    return calls


class TestGeneratePhasage:
    def test_commit_saves_once(self, client, engine, llm, chantier, monkeypatch):
        calls = _spy_save(monkeypatch)
        llm.queue(PHASAGE)

        res = client.post("/api/phasage", json={"chantier_id": chantier.id})

        assert res.status_code == 200
        body = res.json()
        assert body["success"] is True
        assert [l["titre"] for l in body["data"]] == ["Démolition", "Plomberie"]
        assert len(calls) == 1
        lots = _lots(engine, chantier.id)
        assert [l.titre for l in lots] == ["Démolition", "Plomberie"]
        assert lots[0].niveau_difficulte == 1
        assert lots[0].statut == "a_venir"
        assert fetch(engine, Chantier, chantier.id).statut == "en_cours"

    def test_preview_does_not_persist(self, client, engine, llm, chantier, monkeypatch):
        calls = _spy_save(monkeypatch)
        llm.queue(PHASAGE)

        res = client.post("/api/phasage", json={"chantier_id": chantier.id, "mode": "preview"})

        assert res.status_code == 200
        assert len(res.json()["data"]) == 2
        assert calls == []
        assert _lots(engine, chantier.id) == []

    def test_unusable_response_writes_nothing(self, client, engine, llm, chantier, monkeypatch):
        calls = _spy_save(monkeypatch)
        llm.queue("Je ne peux pas répondre.", '{"lots": []}')

        res = client.post("/api/phasage", json={"chantier_id": chantier.id})

        assert res.status_code == 502
        assert res.json()["success"] is False
        assert len(llm.calls) == 2
        assert calls == []
        assert _lots(engine, chantier.id) == []

    def test_retry_after_invalid_json(self, client, engine, llm, chantier):
        llm.queue("```json\n{pas du json\n```", PHASAGE)

        res = client.post("/api/phasage", json={"chantier_id": chantier.id})

        assert res.status_code == 200
        assert len(llm.calls) == 2
        assert len(_lots(engine, chantier.id)) == 2

    def test_unknown_chantier(self, client, llm):
        res = client.post("/api/phasage", json={"chantier_id": 999})

        assert res.status_code == 404
        assert res.json() == {"success": False, "error": "Chantier introuvable"}
        assert llm.calls == []

    def test_prompt_contains_rules_and_context(self, client, engine, llm, chantier):
        persist(
            engine,
            ReglePhasage(
                code="elec_avant_placo",
                titre="Électricité avant placo",
                type_regle="dependance",
                message_ia="Passer les gaines avant de fermer les cloisons",
                priorite=1,
            ),
            ReglePhasage(code="inactive", titre="Règle inactive", type_regle="conseil", est_active=False),
        )
        llm.queue(PHASAGE)

        client.post("/api/phasage", json={"chantier_id": chantier.id, "infos": {"surface_m2": 6}})

        system = llm.calls[0]["system"]
        assert "- Électricité avant placo : Passer les gaines avant de fermer les cloisons" in system
        assert "Règle inactive" not in system
        assert "**Surface :** 6 m²" in system
        assert "Rénovation salle de bain" in system
        assert llm.calls[0]["temperature"] == 0.4
        assert llm.calls[0]["max_tokens"] == 2500

    def test_generation_uses_stored_ia_settings(self, client, engine, llm, chantier):
        persist(
            engine,
            AppSetting(key="openai_model_default", value="gpt-4o-mini", categorie="config_ia"),
            AppSetting(key="openai_temperature_default", value=0.9, categorie="config_ia"),
            AppSetting(key="openai_max_tokens_default", value=1234, categorie="config_ia"),
        )
        llm.queue(PHASAGE)

        client.post("/api/phasage", json={"chantier_id": chantier.id, "mode": "preview"})

        call = llm.calls[0]
        assert (call["model"], call["temperature"], call["max_tokens"]) == ("gpt-4o-mini", 0.9, 1234)

    def test_replace_removes_previous_hierarchy(self, client, engine, llm, chantier):
        old = persist(engine, Lot(chantier_id=chantier.id, ordre=1, titre="Ancien lot"))
        persist(engine, Etape(lot_id=old.id, numero=1, ordre=1, titre="Ancienne étape", statut="à_venir"))
        llm.queue(PHASAGE)

        res = client.post("/api/phasage", json={"chantier_id": chantier.id, "replace": True})

        assert res.status_code == 200
        assert [l.titre for l in _lots(engine, chantier.id)] == ["Démolition", "Plomberie"]
        with Session(engine) as s:
            assert s.exec(select(Etape)).all() == []


class TestSaveAndReset:
    def test_save_requires_lots(self, client, chantier):
        res = client.post("/api/phasage", json={"chantier_id": chantier.id, "action": "save"})

        assert res.status_code == 400
        assert res.json()["success"] is False

    def test_save_client_lots(self, client, engine, llm, chantier):
        lots = [{"ordre": 1, "titre": "Peinture", "cout_estime": 80}]

        res = client.post("/api/phasage", json={"chantier_id": chantier.id, "action": "save", "lots": lots})

        assert res.status_code == 200
        assert res.json()["data"][0]["titre"] == "Peinture"
        assert res.json()["data"][0]["id"] is not None
        assert llm.calls == []

    def test_reset(self, client, engine, chantier, lot):
        res = client.post("/api/phasage", json={"chantier_id": chantier.id, "action": "reset"})

        assert res.json()["data"] == {"deleted": 1}
        assert _lots(engine, chantier.id) == []


class TestPhasageActions:
    LOTS = [
        {"ordre": 1, "titre": "Démolition", "cout_estime": 100},
        {"ordre": 2, "titre": "Plomberie", "cout_estime": 300},
        {"ordre": 3, "titre": "Carrelage", "cout_estime": 600},
    ]

    def test_supprimer_lot(self, client):
        content = (
            "Je retire la plomberie.\n"
            '```json\n{"phasage_action": {"type": "supprimer_lot", "target_id": 2, "message": "Lot retiré"}}\n```'
        )

        res = client.post("/api/phasage/actions", json={"lots": self.LOTS, "content": content})

        data = res.json()["data"]
        assert [(l["ordre"], l["titre"]) for l in data["lots"]] == [(1, "Démolition"), (2, "Carrelage")]
        assert data["message"] == "Je retire la plomberie."
        assert data["applied"] == 1

    def test_ajuster_budget(self, client):
        content = '{"phasage_action": {"type": "ajuster_budget_global", "changes": {"budget_cible": 500}}}'

        res = client.post("/api/phasage/actions", json={"lots": self.LOTS, "content": content})

        lots = res.json()["data"]["lots"]
        assert [l["cout_estime"] for l in lots] == [50, 150, 300]
        assert res.json()["data"]["message"] == "Modification effectuée !"

    def test_malformed_block(self, client):
        content = '```json\n{"phasage_action": {"type": "supprimer_lot", "target_id": 2,}\n```'

        res = client.post("/api/phasage/actions", json={"lots": self.LOTS, "content": content})

        assert res.status_code == 422
        assert res.json()["success"] is False

    def test_no_marker_returns_lots_unchanged(self, client):
        res = client.post("/api/phasage/actions", json={"lots": self.LOTS, "content": "Rien à changer."})

        data = res.json()["data"]
        assert [l["titre"] for l in data["lots"]] == ["Démolition", "Plomberie", "Carrelage"]
        assert data["applied"] == 0


class TestFormatRegles:
    def test_sections_order_and_fallback(self):
        regles = [
            ReglePhasage(code="c1", titre="Protéger les sols", type_regle="conseil", description="Bâche"),
            ReglePhasage(code="i1", titre="Gaz", type_regle="interdit", message_ia="Jamais de travaux gaz"),
            ReglePhasage(code="d1", titre="Plomberie avant carrelage", type_regle="dependance", description="Réseaux d'abord"),
        ]

        out = format_regles_for_prompt(regles)

        assert out == (
            "### INTERDITS (ne jamais proposer)\n- Gaz : Jamais de travaux gaz\n\n"
            "### ORDRE DES TRAVAUX (dépendances obligatoires)\n- Plomberie avant carrelage : Réseaux d'abord\n\n"
            "### BONNES PRATIQUES\n- Protéger les sols : Bâche"
        )

    def test_empty(self):
        assert format_regles_for_prompt([]) == ""
