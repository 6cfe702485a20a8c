# tests/conftest.py
import json
import os

os.environ.setdefault("OPENAI_API_KEY", "sk-test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session

from diy_backend.db import create_db_engine, init_db
from diy_backend.main import create_app
from diy_backend.models import Chantier, Etape, Lot, Tache


class FakeLLM:
    """Client LLM scripté : renvoie les réponses dans l'ordre et garde les appels."""

    def __init__(self, model: str = "fake-model"):
        self.model = model
        self.responses = []
        self.calls = []

    def queue(self, *responses):
        for r in responses:
            self.responses.append(r if isinstance(r, str) else json.dumps(r, ensure_ascii=False))

    def complete(self, system, user, *, model=None, temperature=0.3, max_tokens=2000, json_mode=False):
        self.calls.append(
            {"system": system, "user": user, "model": model, "temperature": temperature, "max_tokens": max_tokens}
        )
        if not self.responses:
            raise AssertionError("FakeLLM: aucune réponse programmée")
        return self.responses.pop(0)


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://", echo=False, poolclass=StaticPool)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def app(engine, llm):
    return create_app(engine=engine, llm=llm)


@pytest.fixture
def client(app):
    return TestClient(app)


def persist(engine, *objs):
    """Enregistre les objets et les renvoie détachés avec leur id."""
    with Session(engine) as s:
        s.add_all(objs)
        s.commit()
        for o in objs:
            s.refresh(o)
    return objs[0] if len(objs) == 1 else objs


def fetch(engine, model, id_):
    with Session(engine) as s:
        return s.get(model, id_)


@pytest.fixture
def chantier(engine):
    return persist(engine, Chantier(titre="Rénovation salle de bain", description="Douche à l'italienne"))


@pytest.fixture
def lot(engine, chantier):
    return persist(engine, Lot(chantier_id=chantier.id, ordre=1, titre="Plomberie", code_expertise="plomberie"))


@pytest.fixture
def etape(engine, lot):
    return persist(
        engine,
        Etape(lot_id=lot.id, numero=1, ordre=1, titre="Poser l'évacuation", statut="à_venir", duree_estimee_minutes=60),
    )


@pytest.fixture
def taches(engine, etape):
    return persist(
        engine,
        *[
            Tache(etape_id=etape.id, numero=i, ordre=i, titre=f"Tâche {i}", statut="à_faire")
            for i in range(1, 5)
        ],
    )
