from datetime import datetime

import pytest

from hmpi_backend.errors import RowParseError, ValidationError
from hmpi_backend.normalizer import (InputFormat, Sample, normalize, normalize_batch,
                                     normalize_csv_row, normalize_dataset_row,
                                     normalize_partner_row, parse_year, safe_float,
                                     sample_to_partner_row, validate_collection,
                                     validate_partner_envelope)


@pytest.mark.parametrize("raw,expected", [
    ("1.5", 1.5), (" 2 ", 2.0), (3, 3.0), ("abc", None), ("", None),
    (None, None), ("nan", None), ("inf", None), (True, None),
])
def test_safe_float(raw, expected):
    assert safe_float(raw) == expected


def test_parse_year_defaults_to_current_year():
    assert parse_year("2021") == 2021
    assert parse_year("2019-06-01") == 2019
    assert parse_year(2018.0) == 2018
    assert parse_year("unknown") == datetime.now().year
    assert parse_year(None) == datetime.now().year


def test_dataset_row_converts_ppb_to_mg_per_litre(dataset_row):
    dataset_row.update({"As_ppb": 20, "U_ppb": "30", "F_mgL": 0.8})
    sample = normalize_dataset_row(dataset_row)

    assert sample.metals["iron"] == pytest.approx(0.6)
    assert sample.metals["arsenic"] == pytest.approx(0.02)
    assert sample.metals["uranium"] == pytest.approx(0.03)
    assert sample.metals["fluoride"] == pytest.approx(0.8)
    assert sample.location.name == "Site A"
    assert sample.location.latitude == pytest.approx(30.901)
    assert sample.location.year == 2023
    assert sample.water_quality.ph == 7.5
    assert sample.water_quality.total_hardness is None


def test_dataset_row_leaves_absent_metals_out(dataset_row):
    sample = normalize_dataset_row(dataset_row)
    assert set(sample.metals) == {"iron"}


def test_dataset_row_unparseable_values_become_zero(dataset_row):
    dataset_row.update({"Fe_ppm": "n/a", "As_ppb": "bad", "Latitude": "north"})
    sample = normalize_dataset_row(dataset_row)
    assert sample.metals == {"iron": 0.0, "arsenic": 0.0}
    assert sample.location.latitude == 0.0


def test_dataset_row_missing_required_fields():
    with pytest.raises(ValidationError) as excinfo:
        normalize_dataset_row({"State": "Punjab", "Location": " ", "Fe_ppm": 0.4})
    assert excinfo.value.missing_fields == ["District", "Location", "Longitude", "Latitude", "Year"]


def test_partner_row(partner_row):
    sample = normalize_partner_row(partner_row)
    assert sample.metals == {"arsenic": 0.005, "lead": 0.01}
    assert sample.location.name == "Well 7"
    assert sample.location.year == 2022
    assert sample.row_number == 2
    assert sample.water_quality.ec == 410
    assert sample.water_quality.total_hardness == 220


def test_partner_row_best_effort_metals_and_defaults():
    sample = normalize_partner_row({
        "location": {"state": "Bihar", "district": "Patna", "latitude": "25.6", "longitude": 85.1},
        "heavyMetals": {"Iron": "oops", "cadmium": 0.004, "manganese": 0.2},
    })
    assert sample.metals == {"iron": 0.0, "cadmium": 0.004, "manganese": 0.2}
    assert sample.location.name == "Unknown Location"
    assert sample.location.latitude == 25.6
    assert sample.row_number is None


def test_partner_row_without_location_block():
    with pytest.raises(ValidationError) as excinfo:
        normalize_partner_row({"heavyMetals": {"iron": 0.5}, "rowNumber": 9})
    assert excinfo.value.row_number == 9


def csv_record(**values):
    return {k: str(v) for k, v in values.items()}


def test_csv_row_resolves_synonyms():
    sample = normalize_csv_row(csv_record(
        site_name="Canal Bank", state="Punjab", lat="30.2", long="75.1",
        pb="0.02", cd="0.001", no3="45", sampling_year="2020", temp="24.5", ec="300",
    ), row_number=4)

    assert sample.location.name == "Canal Bank"
    assert sample.location.district == "Unknown District"
    assert sample.location.latitude == 30.2
    assert sample.location.longitude == 75.1
    assert sample.location.year == 2020
    assert sample.metals == {"lead": 0.02, "cadmium": 0.001, "nitrate": 45.0}
    assert sample.water_quality.temperature == 24.5
    assert sample.water_quality.ec == 300
    assert sample.row_number == 4


def test_csv_latitude_precedence_prefers_declared_order():
    both = normalize_csv_row(csv_record(latitude="10.5", lat="20.5", longitude="77", arsenic="0.01"))
    assert both.location.latitude == 10.5

    first_empty = normalize_csv_row(csv_record(latitude="", lat="20.5", longitude="77", arsenic="0.01"))
    assert first_empty.location.latitude == 20.5

    first_placeholder = normalize_csv_row(csv_record(latitude="-", lat="20.5", longitude="77", arsenic="0.01"))
    assert first_placeholder.location.latitude == 20.5


def test_csv_metal_precedence_and_placeholders():
    sample = normalize_csv_row(csv_record(
        latitude="10", longitude="77", arsenic="-", **{"as": "0.03"}, lead="0.01", pb="0.5",
    ))
    assert sample.metals == {"arsenic": 0.03, "lead": 0.01}


def test_csv_negative_metal_is_not_a_reading():
    with pytest.raises(RowParseError) as excinfo:
        normalize_csv_row(csv_record(latitude="10", longitude="77", iron="-0.4"), row_number=3)
    assert excinfo.value.message == "Invalid heavy metals data: No valid heavy metal concentrations found"
    assert excinfo.value.row_number == 3


def test_csv_zero_metal_is_a_reading():
    sample = normalize_csv_row(csv_record(latitude="10", longitude="77", iron="0"))
    assert sample.metals == {"iron": 0.0}


def test_csv_missing_coordinates_rejected():
    with pytest.raises(RowParseError) as excinfo:
        normalize_csv_row(csv_record(latitude="10", iron="0.4"))
    assert "Missing latitude or longitude" in excinfo.value.message


def test_csv_unparseable_coordinates_rejected():
    with pytest.raises(RowParseError) as excinfo:
        normalize_csv_row(csv_record(latitude="ten", longitude="77", iron="0.4"))
    assert "Invalid coordinate values" in excinfo.value.message


def test_normalize_dispatches_on_format(dataset_row, partner_row):
    assert isinstance(normalize(InputFormat.DATASET, dataset_row), Sample)
    assert normalize(InputFormat.PARTNER, partner_row).location.name == "Well 7"


def test_normalize_batch_keeps_failures_in_place(dataset_row):
    entries = normalize_batch(InputFormat.DATASET, [dataset_row, {"Fe_ppm": 1}, dataset_row])
    assert isinstance(entries[0], Sample)
    assert isinstance(entries[1], ValidationError)
    assert isinstance(entries[2], Sample)


@pytest.mark.parametrize("rows", [None, "rows", {}, [], [1, 2], [{"a": 1}, "b"]])
def test_validate_collection_rejects(rows):
    with pytest.raises(ValidationError):
        validate_collection(rows, "samples")


@pytest.mark.parametrize("payload", [
    None,
    {"data": [{"location": {}}]},
    {"success": False, "data": [{"location": {}}]},
    {"success": True, "data": {}},
    {"success": True, "data": []},
    {"success": True, "data": ["row"]},
])
def test_validate_partner_envelope_rejects(payload):
    with pytest.raises(ValidationError):
        validate_partner_envelope(payload)


def test_sample_to_partner_row_round_trips_through_partner_mode():
    sample = normalize_csv_row(csv_record(location="Well", latitude="11", longitude="76", fe="0.9", ph="6.8"),
                               row_number=7)
    row = sample_to_partner_row(sample)
    assert row["rowNumber"] == 7
    assert row["additionalData"] == {"ph": 6.8}
    assert normalize_partner_row(row) == sample


@pytest.mark.parametrize("raw,expected", [
    ("0.6ppm", 0.6), ("0.02 mg/L", 0.02), ("30.9N", 30.9), (" -1.5e2x", -150.0),
    (".5", 0.5), ("7.", 7.0), ("-", None), ("mg 0.4", None),
])
def test_safe_float_takes_leading_number(raw, expected):
    assert safe_float(raw) == expected


def test_dataset_row_metal_with_unit_suffix(dataset_row):
    dataset_row["Fe_ppm"] = "0.6ppm"
    assert normalize_dataset_row(dataset_row).metals["iron"] == pytest.approx(0.6)


def test_csv_values_with_unit_suffix():
    sample = normalize_csv_row(csv_record(latitude="30.9N", longitude="75.8", arsenic="0.02 mg/L"))
    assert sample.metals == {"arsenic": pytest.approx(0.02)}
    assert sample.location.latitude == 30.9
