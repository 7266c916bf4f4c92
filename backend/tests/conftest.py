import asyncio
import random

import pytest
from fastapi.testclient import TestClient

from verifiche.db import make_engine, make_session_factory, init_db
from verifiche.documents import DocumentStore
from verifiche.main import app
from verifiche.schemas import QuizContent
from verifiche.state import AppState


SAMPLE_QUIZ = {
    "rubric": {"0-50": "Insufficiente (4)", "51-100": "Sufficiente (6)"},
    "questions": [
        {
            "id": 1,
            "text": "Quale livello OSI gestisce l'instradamento?",
            "type": "multiple-choice",
            "points": 40,
            "correctAnswer": "B",
            "options": ["A) Fisico", "B) Rete", "C) Sessione"],
        },
        {
            "id": 2,
            "text": "Quale protocollo garantisce la consegna ordinata dei pacchetti?",
            "type": "closed",
            "points": 20,
            "correctAnswer": "TCP",
        },
        {
            "id": 3,
            "text": "Descrivi il funzionamento del DNS.",
            "type": "open",
            "points": 40,
            "correctAnswer": "Risoluzione dei nomi in indirizzi IP",
            "image": "https://placehold.co/300x200",
        },
    ],
}


class FakeGenerator:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    async def generate(self, topic, complexity):
        self.calls.append((topic, complexity))
        if self.error is not None:
            raise self.error
        return self.content


@pytest.fixture()
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    yield eng
    eng.dispose()


@pytest.fixture()
def store(engine):
    """Bare document store for async tests."""
    init_db(engine)
    return DocumentStore(make_session_factory(engine))


@pytest.fixture()
def generator():
    return FakeGenerator(content=QuizContent.model_validate(SAMPLE_QUIZ))


@pytest.fixture()
def app_state(engine, generator):
    state = AppState.from_engine(
        engine,
        app_id="test",
        public_base_url="http://testserver/",
        generator_factory=lambda: generator,
        rng=random.Random(1234),
    )
    asyncio.run(state.start())
    yield state
    state.stop()


@pytest.fixture()
def client(app_state):
    app.state.ctx = app_state
    return TestClient(app)


@pytest.fixture()
def teacher_headers(client):
    token = client.post("/auth/anonymous").json()["access_token"]
    return {"Authorization": f"Bearer {token}"}
