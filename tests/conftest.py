"""Shared fixtures: Flask test client with in-memory collaborators."""

import copy
from types import SimpleNamespace

import pytest
from pymongo.errors import PyMongoError

from hmpi_backend import app as app_module
from hmpi_backend.predictor import SourcePredictor
from hmpi_backend.store import ResultsStore


class FakeCollection:
    """Just enough of a pymongo collection for the results store"""

    def __init__(self, docs=None, fail=False):
        self.docs = list(docs or [])
        self.fail = fail

    def insert_many(self, docs):
        if self.fail:
            raise PyMongoError("connection refused")
        for doc in docs:
            self.docs.append(copy.deepcopy(doc))

    def find(self, query=None, projection=None):
        if self.fail:
            raise PyMongoError("connection refused")
        hidden = {k for k, v in (projection or {}).items() if not v}
        return [{k: v for k, v in doc.items() if k not in hidden} for doc in self.docs]


def fake_genai_client(text):
    calls = []

    def generate_content(model, contents):
        calls.append({"model": model, "contents": contents})
        return SimpleNamespace(text=text)

    return SimpleNamespace(models=SimpleNamespace(generate_content=generate_content), calls=calls)


@pytest.fixture
def collection():
    return FakeCollection()


@pytest.fixture
def client(monkeypatch, collection):
    monkeypatch.setattr(app_module, "get_results_store", lambda: ResultsStore(collection))
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as c:
        yield c


@pytest.fixture
def dataset_row():
    return {
        "State": "Punjab",
        "District": "Ludhiana",
        "Location": "Site A",
        "Longitude": 75.8573,
        "Latitude": 30.9010,
        "Year": 2023,
        "pH": 7.5,
        "EC": 500,
        "Fe_ppm": 0.6,
    }


@pytest.fixture
def partner_row():
    return {
        "rowNumber": 2,
        "location": {
            "state": "Haryana",
            "district": "Hisar",
            "name": "Well 7",
            "latitude": 29.15,
            "longitude": 75.72,
            "year": 2022,
        },
        "heavyMetals": {"arsenic": 0.005, "lead": "0.01"},
        "additionalData": {"ph": 7.1, "ec": 410, "total hardness": 220},
    }


@pytest.fixture
def make_genai_client():
    return fake_genai_client


@pytest.fixture
def make_predictor(make_genai_client):
    def factory(text):
        return SourcePredictor(client=make_genai_client(text), model="test-model")
    return factory
