# Pollution source prediction through Gemini
import json
import logging
import re
from typing import Any, Dict, List, Optional

from google import genai
from google.genai import types

from .config import settings
from .errors import UpstreamError

logger = logging.getLogger(__name__)

PREDICTION_METALS = ('iron', 'arsenic', 'lead', 'cadmium', 'chromium', 'mercury', 'nickel', 'zinc')

SOURCE_CATEGORIES = ('Industrial', 'Agricultural', 'Natural', 'Domestic')

PROMPT_TEMPLATE = """
You are an environmental scientist. You are given a water sample with measurements of heavy metals and water quality. Some heavy metals may not be measured. Based on the available data, predict the most likely pollution source and provide an explanation.

Water Sample Data:
- pH: {ph}
- Metals (mg/L):
{metals}
- HMPI Value: {hmpi}
- Location: {state}, {district}

Predict the pollution source among the following categories:
{categories}

Instructions:
1. Take into account that some metals may not be measured.
2. Base your reasoning on the metals that are present and their concentrations.
3. Provide the output as JSON with three fields:
{{
  "predictedSource": "Industrial",
  "confidence": 0.0-1.0,
  "explanation": "Explain why this source is most likely based on the metal concentrations and other features."
}}
"""

_FENCE = re.compile(r'```json|```')


def _fmt(value) -> str:
    return 'null' if value is None else str(value)


def build_prompt(result: Dict[str, Any]) -> str:
    sample_info = result.get('sampleInfo') or {}
    location = result.get('location') or {}
    hmpi = result.get('hmpiResult') or {}
    contributions = hmpi.get('metalContributions') or {}

    metal_lines = []
    for metal in PREDICTION_METALS:
        concentration = (contributions.get(metal) or {}).get('concentration')
        metal_lines.append(f"  - {metal.capitalize()}: {_fmt(concentration)}")

    return PROMPT_TEMPLATE.format(
        ph=_fmt(sample_info.get('pH')),
        metals='\n'.join(metal_lines),
        hmpi=_fmt(hmpi.get('value')),
        state=_fmt(location.get('state')),
        district=_fmt(location.get('district')),
        categories='\n'.join(f"- {c}" for c in SOURCE_CATEGORIES),
    )


def parse_response(text: Optional[str]) -> Dict[str, Any]:
    """Strip markdown fences and parse; keep the raw text when it is not JSON"""
    cleaned = _FENCE.sub('', text or '').strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        return {'error': 'Failed to parse AI response', 'raw': cleaned}
    if not isinstance(parsed, dict):
        return {'error': 'Failed to parse AI response', 'raw': cleaned}
    return parsed


def get_genai_client():
    if not settings.gemini_api_key:
        raise UpstreamError('GEMINI_API_KEY is not configured')
    return genai.Client(
        api_key=settings.gemini_api_key,
        http_options=types.HttpOptions(timeout=settings.gemini_timeout_ms),
    )


class SourcePredictor:
    """Ask the model for the likely pollution source of scored samples"""

    def __init__(self, client=None, model: Optional[str] = None):
        self._client = client
        self.model = model or settings.gemini_model

    @property
    def client(self):
        if self._client is None:
            self._client = get_genai_client()
        return self._client

    def predict_one(self, result: Dict[str, Any]) -> Dict[str, Any]:
        prompt = build_prompt(result)
        try:
            response = self.client.models.generate_content(model=self.model, contents=prompt)
        except UpstreamError:
            raise
        except Exception as e:
            logger.error(f"Gemini call failed: {e}", exc_info=True)
            raise UpstreamError(f'error while predicting the pollution source: {e}') from e
        return parse_response(getattr(response, 'text', None))

    def predict(self, results: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        predictions = []
        for result in results:
            predictions.append({
                'rowNumber': result.get('originalRowNumber'),
                'content': self.predict_one(result),
            })
        logger.info(f"Predicted pollution sources for {len(predictions)} samples")
        return predictions
