import pytest

from hmpi_backend.config import settings
from hmpi_backend.errors import UpstreamError
from hmpi_backend.predictor import SourcePredictor, build_prompt, parse_response

RESULT = {
    "success": True,
    "originalRowNumber": 5,
    "location": {"state": "Punjab", "district": "Bathinda"},
    "sampleInfo": {"pH": 7.4},
    "hmpiResult": {
        "value": 312.5,
        "metalContributions": {
            "arsenic": {"concentration": 0.03},
            "lead": {"concentration": 0.012},
        },
    },
}


def test_build_prompt_marks_unmeasured_metals_null():
    prompt = build_prompt(RESULT)
    assert "- pH: 7.4" in prompt
    assert "  - Arsenic: 0.03" in prompt
    assert "  - Mercury: null" in prompt
    assert "- HMPI Value: 312.5" in prompt
    assert "- Location: Punjab, Bathinda" in prompt
    assert '"predictedSource": "Industrial"' in prompt


def test_parse_response_strips_fences():
    text = '```json\n{"predictedSource": "Industrial", "confidence": 0.9}\n```'
    assert parse_response(text) == {"predictedSource": "Industrial", "confidence": 0.9}


@pytest.mark.parametrize("text", ["not json", "[1, 2]", None])
def test_parse_response_keeps_raw_text(text):
    parsed = parse_response(text)
    assert parsed["error"] == "Failed to parse AI response"
    assert "raw" in parsed


def test_predict_uses_client(make_genai_client):
    client = make_genai_client('{"predictedSource": "Agricultural", "confidence": 0.6}')
    predictions = SourcePredictor(client=client, model="m").predict([RESULT])

    assert predictions == [{"rowNumber": 5, "content": {"predictedSource": "Agricultural", "confidence": 0.6}}]
    assert client.calls[0]["model"] == "m"
    assert "Bathinda" in client.calls[0]["contents"]


def test_client_failure_is_upstream_error():
    class Models:
        def generate_content(self, model, contents):
            raise RuntimeError("deadline exceeded")

    class Client:
        models = Models()

    with pytest.raises(UpstreamError):
        SourcePredictor(client=Client()).predict([RESULT])


def test_missing_api_key(monkeypatch):
    monkeypatch.setattr(settings, "gemini_api_key", "")
    with pytest.raises(UpstreamError):
        SourcePredictor().predict([RESULT])
