# tests/test_notes.py
from diy_backend.models import Etape, Lot, Tache
from tests.conftest import fetch, persist


def _add(client, level, item_id, texte, **extra):
    return client.post(f"/api/notes/{level}/{item_id}", json={"texte": texte, **extra})


class TestNotesRoutes:
    def test_add_then_list(self, client, engine, lot):
        res = _add(client, "travail", lot.id, "  Acheter du téflon ", source="utilisateur")

        assert res.status_code == 201
        note = res.json()["data"]
        assert note["texte"] == "Acheter du téflon"
        assert note["source"] == "utilisateur"
        assert note["id"]
        listed = client.get(f"/api/notes/travail/{lot.id}").json()["data"]
        assert [n["id"] for n in listed] == [note["id"]]
        assert fetch(engine, Lot, lot.id).notes[0]["texte"] == "Acheter du téflon"

    def test_notes_keep_order_and_default_source(self, client, etape):
        _add(client, "etape", etape.id, "Première", message_original="Pense à couper l'eau. Première")
        _add(client, "etape", etape.id, "Deuxième")

        listed = client.get(f"/api/notes/etape/{etape.id}").json()["data"]

        assert [n["texte"] for n in listed] == ["Première", "Deuxième"]
        assert listed[0]["source"] == "assistant_ia"
        assert listed[0]["message_original"] == "Pense à couper l'eau. Première"

    def test_update_and_delete(self, client, engine, taches):
        tache_id = taches[0].id
        note_id = _add(client, "tache", tache_id, "Vérifier le joint").json()["data"]["id"]

        res = client.patch(f"/api/notes/tache/{tache_id}/{note_id}", json={"texte": "Changer le joint"})

        assert res.json()["data"]["texte"] == "Changer le joint"
        assert fetch(engine, Tache, tache_id).notes[0]["texte"] == "Changer le joint"

        res = client.delete(f"/api/notes/tache/{tache_id}/{note_id}")

        assert res.json()["data"] == {"deleted": note_id}
        assert fetch(engine, Tache, tache_id).notes == []

    def test_unknown_note(self, client, chantier):
        res = client.delete(f"/api/notes/chantier/{chantier.id}/inconnue")

        assert res.status_code == 404
        assert res.json()["error"] == "Note introuvable"

    def test_unknown_element(self, client):
        res = _add(client, "etape", 999, "Perdue")

        assert res.status_code == 404
        assert res.json()["error"] == "Étape introuvable"

    def test_invalid_level_and_empty_text(self, client, chantier):
        assert client.get(f"/api/notes/piece/{chantier.id}").status_code == 400
        assert _add(client, "chantier", chantier.id, "   ").status_code == 400


class TestCountNotes:
    def test_counts_whole_hierarchy(self, client, engine, chantier, lot, etape, taches):
        autre = persist(engine, Etape(lot_id=lot.id, numero=2, ordre=2, titre="Finitions", statut="à_venir"))
        _add(client, "chantier", chantier.id, "Budget serré")
        _add(client, "travail", lot.id, "Plombier dispo samedi")
        _add(client, "etape", etape.id, "Photos avant")
        _add(client, "etape", autre.id, "Silicone blanc")
        _add(client, "tache", taches[2].id, "Clé de 17")

        res = client.get(f"/api/chantiers/{chantier.id}/notes/count")

        assert res.json()["data"] == {"chantier_id": chantier.id, "count": 5}

    def test_count_without_lots(self, client, chantier):
        assert client.get(f"/api/chantiers/{chantier.id}/notes/count").json()["data"]["count"] == 0

    def test_count_unknown_chantier(self, client):
        assert client.get("/api/chantiers/999/notes/count").status_code == 404
