# tests/test_actions.py
import pytest

from diy_backend.errors import ParseError
from diy_backend.schemas import EtapeGeneree, LotGenere, Materiau
from diy_backend.services.actions import Action, clamp_position, extract_action_block
from diy_backend.services.etapes_actions import apply_etapes_actions
from diy_backend.services.phasage_actions import apply_phasage_actions


def _etapes():
    return [
        EtapeGeneree(numero=1, titre="Préparer", duree_estimee_minutes=20, outils_necessaires=["cutter"]),
        EtapeGeneree(
            numero=2,
            titre="Poncer",
            duree_estimee_minutes=40,
            outils_necessaires=["ponceuse", "cutter"],
            materiaux_necessaires=[Materiau(nom="Abrasif", quantite="3", unite="feuille")],
        ),
        EtapeGeneree(
            numero=3,
            titre="Peindre",
            duree_estimee_minutes=60,
            outils_necessaires=["rouleau"],
            materiaux_necessaires=[Materiau(nom="Abrasif", quantite="1", unite="feuille")],
        ),
    ]


class TestExtraction:
    def test_no_marker(self):
        assert extract_action_block("Tout est prêt.", "etapes_action") is None

    def test_single_action_object(self):
        out = extract_action_block(
            'Je retire l\'étape 1.\n```json\n{"etapes_action": {"type": "supprimer_etape", "target_id": 1}}\n```', "etapes_action"
        )

        assert out.actions == [Action(type="supprimer_etape", target_id=1)]
        assert out.clean_content == "Je retire l'étape 1."

    def test_lead_in_removed(self):
        content = 'Voici la modification :\n```json\n{"etapes_action": [{"type": "x", "message": "Fait !"}]}\n```'

        out = extract_action_block(content, "etapes_action")

        assert out.clean_content == "Fait !"

    def test_multiple_blocks_rejected(self):
        block = '```json\n{"etapes_action": {"type": "supprimer_etape", "target_id": 1}}\n```'

        with pytest.raises(ParseError):
            extract_action_block(f"{block}\npuis\n{block}", "etapes_action")

    def test_invalid_json_rejected(self):
        with pytest.raises(ParseError):
            extract_action_block('```json\n{"etapes_action": {"type": }\n```', "etapes_action")

    def test_wrong_shape_rejected(self):
        with pytest.raises(ParseError):
            extract_action_block('{"etapes_action": [1, 2]}', "etapes_action")

    def test_missing_type_rejected(self):
        with pytest.raises(ParseError):
            extract_action_block('{"etapes_action": {"target_id": 1}}', "etapes_action")


class TestEtapesHandlers:
    def test_inputs_never_mutated(self):
        etapes = _etapes()
        before = [e.model_dump() for e in etapes]

        apply_etapes_actions(
            etapes,
            [
                Action(type="modifier_etape", target_id=1, changes={"titre": "Protéger"}),
                Action(type="supprimer_etape", target_id=3),
            ],
        )

        assert [e.model_dump() for e in etapes] == before

    def test_unknown_type_is_skipped(self):
        etapes = _etapes()

        out = apply_etapes_actions(etapes, [Action(type="dupliquer_etape", target_id=1)])

        assert out == etapes

    def test_deplacer_renumbers(self):
        out = apply_etapes_actions(
            _etapes(), [Action(type="deplacer_etape", target_id=3, changes={"nouvelle_position": 1})]
        )

        assert [(e.numero, e.titre) for e in out] == [(1, "Peindre"), (2, "Préparer"), (3, "Poncer")]

    def test_ajouter_without_position_appends(self):
        out = apply_etapes_actions(_etapes(), [Action(type="ajouter_etape", changes={"titre": "Nettoyer"})])

        assert out[-1].numero == 4
        assert out[-1].duree_estimee_minutes == 30

    def test_fusionner(self):
        out = apply_etapes_actions(
            _etapes(), [Action(type="fusionner_etapes", changes={"numeros": [2, 3], "titre": "Poncer et peindre"})]
        )

        assert [e.titre for e in out] == ["Préparer", "Poncer et peindre"]
        fusion = out[1]
        assert fusion.numero == 2
        assert fusion.duree_estimee_minutes == 100
        assert fusion.outils_necessaires == ["ponceuse", "cutter", "rouleau"]
        assert [m.nom for m in fusion.materiaux_necessaires] == ["Abrasif"]

    def test_invalid_change_is_parse_error(self):
        with pytest.raises(ParseError):
            apply_etapes_actions(
                _etapes(), [Action(type="modifier_etape", target_id=1, changes={"difficulte": "extrême"})]
            )


class TestPhasageHandlers:
    LOTS = [
        LotGenere(ordre=1, titre="Dépose", cout_estime=100, duree_estimee_heures=4),
        LotGenere(ordre=2, titre="Électricité", cout_estime=250, duree_estimee_heures=10),
        LotGenere(ordre=3, titre="Placo", cout_estime=400, duree_estimee_heures=16),
    ]

    def test_fusionner_sums_defaults(self):
        out = apply_phasage_actions(
            self.LOTS, [Action(type="fusionner_lots", changes={"ordres": [2, 3], "titre": "Second œuvre"})]
        )

        assert [(l.ordre, l.titre) for l in out] == [(1, "Dépose"), (2, "Second œuvre")]
        assert out[1].cout_estime == 650
        assert out[1].duree_estimee_heures == 26

    def test_decouper(self):
        out = apply_phasage_actions(
            self.LOTS,
            [
                Action(
                    type="decouper_lot",
                    target_id=1,
                    changes={"nouveaux_lots": [{"titre": "Dépose meubles"}, {"titre": "Dépose carrelage"}]},
                )
            ],
        )

        assert [l.titre for l in out] == ["Dépose meubles", "Dépose carrelage", "Électricité", "Placo"]
        assert [l.ordre for l in out] == [1, 2, 3, 4]

    def test_missing_target_leaves_lots(self):
        out = apply_phasage_actions(self.LOTS, [Action(type="modifier_lot", target_id=9, changes={"titre": "?"})])

        assert out == self.LOTS


@pytest.mark.parametrize("position,size,expected", [(None, 3, 3), (1, 3, 0), (0, 3, 0), (10, 3, 3), (2, 3, 1)])
def test_clamp_position(position, size, expected):
    assert clamp_position(position, size) == expected
