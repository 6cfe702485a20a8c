# tests/test_etapes.py
from sqlmodel import Session, select

from diy_backend.models import AppSetting, Chantier, Etape, Lot
from diy_backend.schemas import EtapeGeneree, Materiau
from diy_backend.services.etapes_service import aggreger_materiaux, calculer_totaux
from tests.conftest import fetch, persist

ETAPES = {
    "etapes": [
        {
            "numero": 1,
            "titre": "Couper l'arrivée d'eau",
            "duree_estimee_minutes": 15,
            "difficulte": "facile",
            "outils_necessaires": ["clé à molette"],
        },
        {
            "numero": 2,
            "titre": "Poser le siphon",
            "duree_estimee_minutes": 45,
            "outils_necessaires": ["scie à métaux", "clé à molette"],
            "materiaux_necessaires": [{"nom": "Colle PVC", "quantite": 1, "unite": "tube"}],
        },
    ],
    "conseils_generaux": "Travailler au sec",
}


def _etapes(engine, lot_id):
    with Session(engine) as s:
        return s.exec(select(Etape).where(Etape.lot_id == lot_id).order_by(Etape.numero)).all()


class TestGenerateEtapes:
    def test_preview_returns_without_writing(self, client, engine, llm, lot):
        llm.queue(ETAPES)

        res = client.post("/api/etapes/generate", json={"lot_id": lot.id})

        assert res.status_code == 200
        data = res.json()["data"]
        assert [e["titre"] for e in data["etapes"]] == ["Couper l'arrivée d'eau", "Poser le siphon"]
        assert data["duree_totale_estimee_minutes"] == 60
        assert data["etapes"][1]["materiaux_necessaires"][0]["quantite"] == "1"
        assert _etapes(engine, lot.id) == []
        assert "plomberie" in llm.calls[0]["system"].lower()

    def test_commit_with_previewed_etapes_skips_generation(self, client, engine, llm, lot):
        res = client.post(
            "/api/etapes/generate",
            json={"lot_id": lot.id, "mode": "commit", "etapes": ETAPES["etapes"]},
        )

        assert res.status_code == 200
        assert llm.calls == []
        rows = _etapes(engine, lot.id)
        assert [e.statut for e in rows] == ["à_venir", "à_venir"]

    def test_commit_generates_then_persists(self, client, engine, llm, lot):
        llm.queue(ETAPES)

        res = client.post("/api/etapes/generate", json={"lot_id": lot.id, "mode": "commit"})

        assert res.status_code == 200
        assert len(res.json()["data"]) == 2
        assert len(_etapes(engine, lot.id)) == 2

    def test_generation_uses_stored_ia_settings(self, client, engine, llm, lot):
        persist(
            engine,
            AppSetting(key="openai_temperature_default", value=0.2, categorie="config_ia"),
            AppSetting(key="openai_max_tokens_default", value=3000, categorie="config_ia"),
        )
        llm.queue(ETAPES)

        client.post("/api/etapes/generate", json={"lot_id": lot.id})

        assert llm.calls[0]["temperature"] == 0.2
        assert llm.calls[0]["max_tokens"] == 3000

    def test_unknown_lot(self, client, llm):
        res = client.post("/api/etapes/generate", json={"lot_id": 42})

        assert res.status_code == 404
        assert llm.calls == []

    def test_invalid_lot_id(self, client):
        res = client.post("/api/etapes/generate", json={"lot_id": 0})

        assert res.status_code == 400
        assert res.json()["error"].startswith("lot_id")


class TestDraftAndValidate:
    def test_draft_then_validate_promotes(self, client, engine, lot):
        res = client.post("/api/etapes/draft", json={"lot_id": lot.id, "etapes": ETAPES["etapes"]})
        assert [e["numero"] for e in res.json()["data"]] == [1, 2]
        assert all(e.statut == "brouillon" for e in _etapes(engine, lot.id))

        listed = client.get("/api/etapes", params={"lot_id": lot.id, "brouillon": True}).json()["data"]
        assert len(listed) == 2
        assert client.get("/api/etapes", params={"lot_id": lot.id}).json()["data"] == []

        res = client.post("/api/etapes/validate", json={"lot_id": lot.id})

        assert [e["statut"] for e in res.json()["data"]] == ["à_venir", "à_venir"]
        assert fetch(engine, Lot, lot.id).statut == "a_venir"

    def test_new_draft_replaces_previous(self, client, engine, lot):
        client.post("/api/etapes/draft", json={"lot_id": lot.id, "etapes": ETAPES["etapes"]})
        client.post("/api/etapes/draft", json={"lot_id": lot.id, "etapes": ETAPES["etapes"][:1]})

        assert len(_etapes(engine, lot.id)) == 1

    def test_delete_by_statut(self, client, engine, lot):
        persist(
            engine,
            Etape(lot_id=lot.id, numero=1, ordre=1, titre="Validée", statut="à_venir"),
            Etape(lot_id=lot.id, numero=2, ordre=2, titre="Brouillon", statut="brouillon"),
        )

        res = client.delete("/api/etapes", params={"lot_id": lot.id, "statut": "brouillon"})

        assert res.json()["data"] == {"deleted": 1}
        assert [e.titre for e in _etapes(engine, lot.id)] == ["Validée"]

    def test_summary(self, client, lot):
        client.post("/api/etapes/validate", json={"lot_id": lot.id, "etapes": ETAPES["etapes"]})

        data = client.get("/api/etapes/summary", params={"lot_id": lot.id}).json()["data"]

        assert data["totaux"] == {"duree_totale_minutes": 60, "duree_totale_heures": 1.0, "nombre_etapes": 2}
        assert data["outils"] == ["clé à molette", "scie à métaux"]
        assert data["has_validees"] is True
        assert data["has_brouillon"] is False



class TestEtapesProgression:
    def test_replacing_etapes_resets_lot_and_chantier(self, client, engine, chantier, lot, etape, taches):
        client.post("/api/taches/terminer-toutes", json={"etape_id": etape.id})
        assert fetch(engine, Chantier, chantier.id).progression == 100

        res = client.post(
            "/api/etapes/validate",
            json={"lot_id": lot.id, "etapes": [{"numero": 1, "titre": "Nouvelle"}]},
        )

        assert res.status_code == 200
        lot_row = fetch(engine, Lot, lot.id)
        chantier_row = fetch(engine, Chantier, chantier.id)
        assert lot_row.progression == 0
        assert lot_row.statut == "a_venir"
        assert chantier_row.progression == lot_row.progression
        assert chantier_row.statut == "en_cours"

    def test_validate_without_drafts_keeps_progression(self, client, engine, chantier, lot, etape, taches):
        client.post("/api/taches/terminer-toutes", json={"etape_id": etape.id})

        res = client.post("/api/etapes/validate", json={"lot_id": lot.id})

        assert res.status_code == 200
        assert fetch(engine, Etape, etape.id).progression == 100
        assert fetch(engine, Lot, lot.id).progression == 100
        assert fetch(engine, Lot, lot.id).statut == "termine"
        assert fetch(engine, Chantier, chantier.id).progression == 100

    def test_promoting_drafts_recomputes_lot(self, client, engine, chantier, lot, etape, taches):
        client.post("/api/taches/terminer-toutes", json={"etape_id": etape.id})
        client.post("/api/etapes/draft", json={"lot_id": lot.id, "etapes": ETAPES["etapes"][:1]})

        client.post("/api/etapes/validate", json={"lot_id": lot.id})

        assert fetch(engine, Lot, lot.id).progression == 50
        assert fetch(engine, Lot, lot.id).statut == "en_cours"
        assert fetch(engine, Chantier, chantier.id).progression == 50

    def test_delete_recomputes_lot_and_chantier(self, client, engine, chantier, lot, etape, taches):
        persist(engine, Etape(lot_id=lot.id, numero=2, ordre=2, titre="Finitions", statut="à_venir"))
        client.post("/api/taches/terminer-toutes", json={"etape_id": etape.id})
        assert fetch(engine, Lot, lot.id).progression == 50

        res = client.delete("/api/etapes", params={"lot_id": lot.id, "statut": "à_venir"})

        assert res.json()["data"] == {"deleted": 1}
        assert fetch(engine, Lot, lot.id).progression == 100
        assert fetch(engine, Chantier, chantier.id).progression == 100

class TestEtapesActions:
    def test_actions_rewrite_drafts(self, client, engine, lot):
        client.post("/api/etapes/draft", json={"lot_id": lot.id, "etapes": ETAPES["etapes"]})
        content = (
            "C'est noté.\n"
            '```json\n{"etapes_action": [{"type": "modifier_etape", "target_id": 2, "changes": {"titre": "Monter le siphon"}},'
            ' {"type": "ajouter_etape", "target_id": 1, "changes": {"titre": "Protéger le sol"}}]}\n```'
        )

        res = client.post("/api/etapes/actions", json={"lot_id": lot.id, "content": content})

        data = res.json()["data"]
        assert [e["titre"] for e in data["etapes"]] == ["Protéger le sol", "Couper l'arrivée d'eau", "Monter le siphon"]
        assert data["message"] == "C'est noté."
        assert [e.titre for e in _etapes(engine, lot.id)] == ["Protéger le sol", "Couper l'arrivée d'eau", "Monter le siphon"]

    def test_malformed_action_leaves_drafts(self, client, engine, lot):
        client.post("/api/etapes/draft", json={"lot_id": lot.id, "etapes": ETAPES["etapes"]})
        content = '```json\n{"etapes_action": "supprimer"}\n```'

        res = client.post("/api/etapes/actions", json={"lot_id": lot.id, "content": content})

        assert res.status_code == 422
        assert [e.titre for e in _etapes(engine, lot.id)] == ["Couper l'arrivée d'eau", "Poser le siphon"]

    def test_actions_without_drafts(self, client, lot):
        content = '{"etapes_action": {"type": "supprimer_etape", "target_id": 1}}'

        res = client.post("/api/etapes/actions", json={"lot_id": lot.id, "content": content})

        assert res.status_code == 404


class TestAggregation:
    def test_materiaux_summed_by_nom_and_unite(self):
        etapes = [
            EtapeGeneree(numero=1, titre="A", materiaux_necessaires=[Materiau(nom="Ciment", quantite="2", unite="sac")]),
            EtapeGeneree(
                numero=2,
                titre="B",
                materiaux_necessaires=[
                    Materiau(nom="Ciment", quantite="1,5", unite="sac"),
                    Materiau(nom="Ciment", quantite="10", unite="kg"),
                ],
            ),
        ]

        out = aggreger_materiaux(etapes)

        assert [(m.nom, m.quantite, m.unite) for m in out] == [("Ciment", "3.5", "sac"), ("Ciment", "10", "kg")]

    def test_totaux_empty(self):
        assert calculer_totaux([]) == {"duree_totale_minutes": 0, "duree_totale_heures": 0.0, "nombre_etapes": 0}
