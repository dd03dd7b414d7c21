# Input normalization: dataset rows, partner nested rows and CSV rows -> Sample
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from .errors import RowParseError, ValidationError


class InputFormat(Enum):
    DATASET = 'dataset'
    PARTNER = 'file'
    CSV = 'csv'


@dataclass(frozen=True)
class SampleLocation:
    state: str
    district: str
    name: str
    latitude: float
    longitude: float
    year: int


@dataclass(frozen=True)
class WaterQuality:
    ph: Optional[float] = None
    ec: Optional[float] = None
    total_hardness: Optional[float] = None
    temperature: Optional[float] = None
    dissolved_oxygen: Optional[float] = None
    tds: Optional[float] = None


@dataclass(frozen=True)
class Sample:
    location: SampleLocation
    metals: Dict[str, float]
    water_quality: WaterQuality = field(default_factory=WaterQuality)
    row_number: Optional[int] = None
    # Raw row label for failure markers, before any location-name default
    label: Optional[str] = field(default=None, compare=False)


REQUIRED_DATASET_FIELDS = ('State', 'District', 'Location', 'Longitude', 'Latitude', 'Year')

# Dataset column -> (metal, divisor to reach mg/L)
DATASET_METAL_FIELDS = {
    'Fe_ppm': ('iron', 1.0),
    'As_ppb': ('arsenic', 1000.0),
    'U_ppb': ('uranium', 1000.0),
    'F_mgL': ('fluoride', 1.0),
}

# Synonym lists are in precedence order
CSV_LOCATION_FIELDS = ('location', 'site_name', 'station_name', 'place')
CSV_LATITUDE_FIELDS = ('latitude', 'lat')
CSV_LONGITUDE_FIELDS = ('longitude', 'lon', 'long')
CSV_YEAR_FIELDS = ('year', 'sampling_year', 'date')

CSV_METAL_SYNONYMS = {
    'arsenic': ('arsenic', 'as'),
    'lead': ('lead', 'pb'),
    'mercury': ('mercury', 'hg'),
    'cadmium': ('cadmium', 'cd'),
    'chromium': ('chromium', 'cr'),
    'iron': ('iron', 'fe'),
    'manganese': ('manganese', 'mn'),
    'zinc': ('zinc', 'zn'),
    'copper': ('copper', 'cu'),
    'nickel': ('nickel', 'ni'),
    'fluoride': ('fluoride', 'f'),
    'nitrate': ('nitrate', 'no3'),
}

CSV_WATER_QUALITY_SYNONYMS = {
    'ph': ('ph', 'ph_value'),
    'tds': ('tds', 'total_dissolved_solids'),
    'ec': ('conductivity', 'ec'),
    'temperature': ('temperature', 'temp'),
    'dissolved_oxygen': ('do', 'dissolved_oxygen'),
}

# Partner additionalData key -> WaterQuality attribute
PARTNER_WATER_QUALITY_KEYS = {
    'ph': 'ph',
    'ec': 'ec',
    'conductivity': 'ec',
    'total hardness': 'total_hardness',
    'temperature': 'temperature',
    'dissolved_oxygen': 'dissolved_oxygen',
    'tds': 'tds',
}

_LEADING_INT = re.compile(r'^\s*([-+]?\d+)')
_LEADING_FLOAT = re.compile(r'^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)')


def safe_float(x) -> Optional[float]:
    """Finite float from a number or the leading numeric prefix of a string
    ("0.6ppm" -> 0.6), None otherwise"""
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, str):
        match = _LEADING_FLOAT.match(x)
        if not match:
            return None
        x = match.group(1)
    try:
        value = float(x)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value


def best_effort_float(x) -> float:
    """Numeric parse where failure means 0"""
    value = safe_float(x)
    return 0.0 if value is None else value


def parse_year(x) -> int:
    """Leading integer of the value, current year when there is none"""
    if isinstance(x, (int, float)) and not isinstance(x, bool) and math.isfinite(x):
        return int(x)
    match = _LEADING_INT.match(str(x)) if x is not None else None
    if match:
        return int(match.group(1))
    return datetime.now().year


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == '')


def _has_value(value: Any) -> bool:
    return not is_blank(value) and str(value).strip() != '-'


def _optional_float(value: Any) -> Optional[float]:
    if is_blank(value):
        return None
    return best_effort_float(value)


def sample_label(row: Any) -> str:
    """Best available human label for a raw row, used in failure markers"""
    if not isinstance(row, Mapping):
        return 'Unknown'
    location = row.get('location')
    if isinstance(location, Mapping) and location.get('name'):
        return str(location['name'])
    if row.get('Location'):
        return str(row['Location'])
    return 'Unknown'


def missing_required_fields(row: Mapping) -> List[str]:
    return [name for name in REQUIRED_DATASET_FIELDS if is_blank(row.get(name))]


def normalize_dataset_row(row: Mapping, row_number: Optional[int] = None) -> Sample:
    """Dataset layout (Fe_ppm, As_ppb, U_ppb, F_mgL) with ppb -> mg/L conversion.

    Present fields that fail to parse are taken as 0. Absent metal columns are
    left out of the metals mapping.
    """
    missing = missing_required_fields(row)
    if missing:
        raise ValidationError('Missing required fields', missing_fields=missing,
                              label=sample_label(row), row_number=row_number)

    metals: Dict[str, float] = {}
    for column, (metal, divisor) in DATASET_METAL_FIELDS.items():
        if is_blank(row.get(column)):
            continue
        metals[metal] = best_effort_float(row.get(column)) / divisor

    location = SampleLocation(
        state=str(row['State']),
        district=str(row['District']),
        name=str(row['Location']),
        latitude=best_effort_float(row['Latitude']),
        longitude=best_effort_float(row['Longitude']),
        year=parse_year(row['Year']),
    )
    water_quality = WaterQuality(
        ph=_optional_float(row.get('pH')),
        ec=_optional_float(row.get('EC')),
        total_hardness=_optional_float(row.get('Total_Hardness')),
    )
    return Sample(location=location, metals=metals, water_quality=water_quality,
                  row_number=row_number, label=sample_label(row))


def normalize_partner_row(row: Mapping, row_number: Optional[int] = None) -> Sample:
    """Partner nested row; concentrations already in mg/L"""
    if row_number is None:
        row_number = row.get('rowNumber')
    loc = row.get('location')
    if not isinstance(loc, Mapping):
        raise ValidationError('Row is missing its location block',
                              missing_fields=['location'], label=sample_label(row),
                              row_number=row_number)

    heavy_metals = row.get('heavyMetals')
    if not isinstance(heavy_metals, Mapping):
        heavy_metals = {}
    metals = {str(metal).strip().lower(): best_effort_float(value)
              for metal, value in heavy_metals.items()}

    location = SampleLocation(
        state=str(loc.get('state') or ''),
        district=str(loc.get('district') or ''),
        name=str(loc.get('name') or 'Unknown Location'),
        latitude=best_effort_float(loc.get('latitude')),
        longitude=best_effort_float(loc.get('longitude')),
        year=parse_year(loc.get('year')),
    )

    additional = row.get('additionalData')
    quality: Dict[str, Optional[float]] = {}
    if isinstance(additional, Mapping):
        for key, attr in PARTNER_WATER_QUALITY_KEYS.items():
            if quality.get(attr) is None:
                quality[attr] = _optional_float(additional.get(key))
    return Sample(location=location, metals=metals, water_quality=WaterQuality(**quality),
                  row_number=row_number, label=sample_label(row))


def _first_present(record: Mapping, fields) -> Optional[str]:
    for name in fields:
        value = record.get(name)
        if _has_value(value):
            return str(value).strip()
    return None


def _first_float(record: Mapping, fields, non_negative: bool = False) -> Optional[float]:
    for name in fields:
        value = record.get(name)
        if not _has_value(value):
            continue
        number = safe_float(value)
        if number is None or (non_negative and number < 0):
            continue
        return number
    return None


def normalize_csv_row(record: Mapping, row_number: Optional[int] = None) -> Sample:
    """CSV record keyed by lower-cased header names.

    Raises RowParseError when coordinates do not resolve or no metal does.
    """
    raw = list(record.values())
    lat_raw = _first_present(record, CSV_LATITUDE_FIELDS)
    lon_raw = _first_present(record, CSV_LONGITUDE_FIELDS)
    if lat_raw is None or lon_raw is None:
        raise RowParseError('Invalid location data: Missing latitude or longitude data',
                            row_number, raw)
    latitude = safe_float(lat_raw)
    longitude = safe_float(lon_raw)
    if latitude is None or longitude is None:
        raise RowParseError('Invalid location data: Invalid coordinate values',
                            row_number, raw)

    metals: Dict[str, float] = {}
    for metal, fields in CSV_METAL_SYNONYMS.items():
        concentration = _first_float(record, fields, non_negative=True)
        if concentration is not None:
            metals[metal] = concentration
    if not metals:
        raise RowParseError('Invalid heavy metals data: No valid heavy metal concentrations found',
                            row_number, raw)

    year_raw = _first_present(record, CSV_YEAR_FIELDS)
    location = SampleLocation(
        state=_first_present(record, ('state',)) or 'Unknown State',
        district=_first_present(record, ('district',)) or 'Unknown District',
        name=_first_present(record, CSV_LOCATION_FIELDS) or 'Unknown Location',
        latitude=latitude,
        longitude=longitude,
        year=parse_year(year_raw),
    )
    quality = {attr: _first_float(record, fields)
               for attr, fields in CSV_WATER_QUALITY_SYNONYMS.items()}
    return Sample(location=location, metals=metals, water_quality=WaterQuality(**quality),
                  row_number=row_number)


_NORMALIZERS = {
    InputFormat.DATASET: normalize_dataset_row,
    InputFormat.PARTNER: normalize_partner_row,
    InputFormat.CSV: normalize_csv_row,
}


def normalize(fmt: InputFormat, row: Mapping, row_number: Optional[int] = None) -> Sample:
    return _NORMALIZERS[fmt](row, row_number)


def normalize_batch(fmt: InputFormat, rows: List[Mapping]) -> List[Union[Sample, ValidationError]]:
    """Normalize every row; validation failures stay in place for inline reporting"""
    entries: List[Union[Sample, ValidationError]] = []
    for row in rows:
        try:
            entries.append(normalize(fmt, row))
        except ValidationError as e:
            entries.append(e)
    return entries


def validate_collection(rows: Any, name: str) -> List[Mapping]:
    """Top-level batch check: a non-empty list of record-shaped elements"""
    if not isinstance(rows, list):
        raise ValidationError(f'Request must contain a "{name}" array')
    if not rows:
        raise ValidationError(f'Empty {name} array')
    bad = [i + 1 for i, row in enumerate(rows) if not isinstance(row, Mapping)]
    if bad:
        raise ValidationError(f'Every element of "{name}" must be an object (bad positions: {bad})')
    return rows


def validate_partner_envelope(payload: Any) -> List[Mapping]:
    if not isinstance(payload, Mapping) or not payload.get('success') \
            or not isinstance(payload.get('data'), list):
        raise ValidationError('Invalid file data format')
    if not payload['data']:
        raise ValidationError('No data to process')
    return validate_collection(payload['data'], 'data')


def sample_to_partner_row(sample: Sample) -> Dict[str, Any]:
    """Partner nested layout for a normalized sample (used by the CSV envelope)"""
    loc = sample.location
    wq = sample.water_quality
    additional = {
        'ph': wq.ph,
        'ec': wq.ec,
        'total hardness': wq.total_hardness,
        'temperature': wq.temperature,
        'dissolved_oxygen': wq.dissolved_oxygen,
        'tds': wq.tds,
    }
    return {
        'rowNumber': sample.row_number,
        'location': {
            'name': loc.name,
            'state': loc.state,
            'district': loc.district,
            'latitude': loc.latitude,
            'longitude': loc.longitude,
            'year': loc.year,
        },
        'heavyMetals': dict(sample.metals),
        'additionalData': {k: v for k, v in additional.items() if v is not None},
    }
