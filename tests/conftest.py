import json
from collections.abc import Generator
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import examai.models  # noqa: F401
from examai.database import Base, create_db_engine, get_db
from examai.main import app
from examai.pipelines.medical_exam import MedicalExamPipeline
from examai.routers.deps import get_pipeline
from examai.services.extractor import StructuredExtractor
from examai.services.parsers import PlainTextParser
from examai.services.text_router import TextExtractionRouter

LAB_REPORT_RESPONSE = {
    "patient": {
        "name": "Maria Silva",
        "birthDate": "1980-01-15",
        "collectionDate": "2026-02-04",
        "requestingPhysician": "Dr. Souza",
    },
    "exams": [
        {
            "type": "HDL",
            "value": 55,
            "unit": "mg/dL",
            "referenceMin": 40,
            "referenceMax": 60,
            "status": "Normal",
            "observations": None,
        },
        {
            "type": "Glicose",
            "value": 92.5,
            "unit": " mg/dL ",
            "referenceMin": 70,
            "referenceMax": 99,
            "status": "normal",
            "observations": "Jejum de 8 horas",
        },
    ],
}


class FakeLLM:
    """Replays canned completions; the last one repeats once the queue is down to it."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.prompts: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    def complete(self, prompt: str):
        self.prompts.append(prompt)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return SimpleNamespace(text=item)


@pytest.fixture()
def make_llm():
    def _make(*responses):
        return FakeLLM(responses)

    return _make


@pytest.fixture()
def lab_report_json() -> str:
    return "Here is the extracted data:\n```json\n" + json.dumps(LAB_REPORT_RESPONSE) + "\n```"


@pytest.fixture()
def fake_llm(make_llm, lab_report_json):
    return make_llm(lab_report_json)


@pytest.fixture()
def pipeline(fake_llm) -> MedicalExamPipeline:
    return MedicalExamPipeline(
        router=TextExtractionRouter([PlainTextParser()]),
        extractor=StructuredExtractor(llm=fake_llm, max_retries=0, retry_delay_seconds=0),
    )


@pytest.fixture()
def db_session() -> Generator:
    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def client(db_session, pipeline) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_pipeline] = lambda: pipeline

    # Not entering the client as a context manager skips the lifespan (migration check and seeding).
    yield TestClient(app)
    app.dependency_overrides.clear()
