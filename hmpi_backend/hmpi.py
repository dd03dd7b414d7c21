# Heavy Metal Pollution Index (HMPI) scoring engine
import logging
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import NoScoreableMetals, ValidationError
from .normalizer import CSV_METAL_SYNONYMS, DATASET_METAL_FIELDS, Sample

logger = logging.getLogger(__name__)

# WHO/BIS permissible limits for drinking water (mg/L)
STANDARD_LIMITS: Mapping[str, float] = MappingProxyType({
    'iron': 0.3,
    'arsenic': 0.01,
    'uranium': 0.015,
    'fluoride': 1.5,
    'lead': 0.01,
    'cadmium': 0.003,
    'chromium': 0.05,
})

# Proportionality constant for unit weights
K = 1


@dataclass(frozen=True)
class SeverityTier:
    upper: Optional[float]
    range: str
    status: str
    level: int
    color: str
    description: str

    def as_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'level': self.level,
            'color': self.color,
            'description': self.description,
        }


# Ordered, half-open on the upper bound; the last tier is open-ended
SEVERITY_TIERS: Tuple[SeverityTier, ...] = (
    SeverityTier(15, '< 15', 'Excellent', 1, '#00ff00', 'Water quality is excellent for all uses'),
    SeverityTier(30, '15-30', 'Good', 2, '#90ee90', 'Water quality is good for most uses'),
    SeverityTier(60, '30-60', 'Acceptable', 3, '#ffff00', 'Water quality is acceptable with minor treatment'),
    SeverityTier(100, '60-100', 'Poor', 4, '#ffa500', 'Water quality is poor, requires treatment'),
    SeverityTier(None, '> 100', 'Polluted', 5, '#ff0000', 'Water is heavily polluted, not suitable for use'),
)

FORMULAS = {
    'hmpi': 'HMPI = Σ(Wi × Qi) / ΣWi',
    'unitWeight': 'Wi = K / Si',
    'qualityRating': 'Qi = 100 × (Ci / Si)',
}

SUPPORTED_METALS = {
    'fromDataset': [metal for metal, _ in DATASET_METAL_FIELDS.values()],
    'fromFile': list(STANDARD_LIMITS.keys()),
    'fromCsv': list(CSV_METAL_SYNONYMS.keys()),
}


def classify(value: float) -> SeverityTier:
    """First tier whose upper bound exceeds the value"""
    for tier in SEVERITY_TIERS:
        if tier.upper is None or value < tier.upper:
            return tier
    return SEVERITY_TIERS[-1]


def metal_contribution(concentration: float, standard_limit: float) -> Tuple[float, float]:
    """Return (Wi, Qi) for one metal"""
    wi = K / standard_limit
    qi = 100 * (concentration / standard_limit)
    return wi, qi


def _location_dict(sample: Sample) -> Dict[str, Any]:
    loc = sample.location
    return {
        'state': loc.state,
        'district': loc.district,
        'location': loc.name,
        'coordinates': {
            'longitude': loc.longitude,
            'latitude': loc.latitude,
        },
    }


def _sample_info(sample: Sample) -> Dict[str, Any]:
    wq = sample.water_quality
    return {
        'year': sample.location.year,
        'pH': wq.ph,
        'EC': wq.ec,
        'totalHardness': wq.total_hardness,
        'temperature': wq.temperature,
        'dissolvedOxygen': wq.dissolved_oxygen,
        'tds': wq.tds,
    }


def calculate_hmpi(sample: Sample) -> Dict[str, Any]:
    """Weighted-mean HMPI of one sample.

    Only metals with a configured limit and a concentration above zero take
    part. Raises NoScoreableMetals when none do.
    """
    total_weighted_qi = 0.0
    total_weights = 0.0
    contributions: Dict[str, Dict[str, float]] = {}

    for metal, concentration in sample.metals.items():
        si = STANDARD_LIMITS.get(metal)
        if not si or concentration is None or concentration <= 0:
            continue
        wi, qi = metal_contribution(concentration, si)
        total_weighted_qi += wi * qi
        total_weights += wi
        contributions[metal] = {
            'concentration': round(concentration, 4),
            'standardLimit': si,
            'qualityRating': round(qi, 2),
            'unitWeight': round(wi, 4),
            'contribution': round(wi * qi, 2),
        }

    if total_weights == 0:
        raise NoScoreableMetals()

    hmpi_value = total_weighted_qi / total_weights
    tier = classify(hmpi_value)

    hmpi_result = {'value': round(hmpi_value, 2)}
    hmpi_result.update(tier.as_dict())
    hmpi_result['validMetalsCount'] = len(contributions)
    hmpi_result['metalContributions'] = contributions

    return {
        'success': True,
        'location': _location_dict(sample),
        'sampleInfo': _sample_info(sample),
        'hmpiResult': hmpi_result,
        'calculationDate': datetime.now().isoformat(),
    }


def failure_marker(message: str, label: Optional[str]) -> Dict[str, Any]:
    return {
        'success': False,
        'error': message,
        'location': label or 'Unknown',
    }


def score_sample(sample: Sample) -> Dict[str, Any]:
    """calculate_hmpi, with NoScoreableMetals turned into a failure marker"""
    try:
        return calculate_hmpi(sample)
    except NoScoreableMetals as e:
        logger.debug(f"Sample at {sample.location.name} not scoreable: {e.message}")
        return failure_marker(e.message, sample.label or sample.location.name)


def batch_statistics(values: Sequence[float]) -> Optional[Dict[str, float]]:
    if not values:
        return None
    arr = np.asarray(values, dtype=float)
    minimum = float(np.min(arr))
    maximum = float(np.max(arr))
    return {
        'average': round(float(np.mean(arr)), 2),
        'minimum': minimum,
        'maximum': maximum,
        'range': round(maximum - minimum, 2),
    }


def score_batch(entries: Sequence[Union[Sample, ValidationError]]) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
    """Score every entry independently, preserving input order.

    Entries that already failed normalization are reported inline. Returns the
    result list and a summary with counts and statistics over successes.
    """
    results: List[Dict[str, Any]] = []
    for index, entry in enumerate(entries):
        if isinstance(entry, ValidationError):
            result = failure_marker(entry.message, entry.label)
            if entry.missing_fields:
                result['missingFields'] = entry.missing_fields
            row_number = entry.row_number
        else:
            result = score_sample(entry)
            row_number = entry.row_number
        if row_number is not None:
            result['originalRowNumber'] = row_number
        result['index'] = index + 1
        results.append(result)

    values = [r['hmpiResult']['value'] for r in results if r['success']]
    summary = {
        'total': len(results),
        'successful': len(values),
        'failed': len(results) - len(values),
        'statistics': batch_statistics(values),
    }
    logger.info(f"Scored batch of {summary['total']} samples "
                f"({summary['successful']} ok, {summary['failed']} failed)")
    return results, summary


def describe_categories() -> Dict[str, Any]:
    """Static descriptor of tiers, limits, formulas and supported metals"""
    categories = []
    for tier in SEVERITY_TIERS:
        entry = {'range': tier.range}
        entry.update(tier.as_dict())
        categories.append(entry)
    return {
        'categories': categories,
        'standardLimits': dict(STANDARD_LIMITS),
        'supportedMetals': {k: list(v) for k, v in SUPPORTED_METALS.items()},
        'formula': dict(FORMULAS),
    }
