# Heavy Metal Pollution Index (HMPI) API
import signal
import sys
from datetime import datetime
from typing import Any, Dict

from flask import Flask, jsonify, request, make_response
from flask_cors import CORS

from . import __version__
from .charts import aggregate_hmpi_by_area, build_results_map, render_hmpi_plot
from .config import settings
from .csv_processor import process_csv_text
from .errors import UpstreamError, ValidationError
from .hmpi import STANDARD_LIMITS, describe_categories, score_batch, score_sample
from .normalizer import (InputFormat, normalize_batch, normalize_dataset_row,
                         validate_collection, validate_partner_envelope)
from .predictor import SourcePredictor
from .store import ResultsStore, close_mongo_client, get_results_collection

# Logging configuration
import logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

DATASET_EXAMPLE = {
    "State": "Test State",
    "District": "Test District",
    "Location": "Test Location",
    "Longitude": 77.2090,
    "Latitude": 28.6139,
    "Year": 2023,
    "pH": 7.5,
    "EC": 500,
    "Fe_ppm": 0.5,
    "As_ppb": 20,
    "U_ppb": 100,
    "F_mgL": 0.8
}

FILE_EXAMPLE = {
    "success": True,
    "data": [
        {
            "location": {"state": "string", "district": "string"},
            "heavyMetals": {"iron": "number", "arsenic": "number"}
        }
    ]
}


def get_results_store() -> ResultsStore:
    return ResultsStore(get_results_collection())


def get_source_predictor() -> SourcePredictor:
    return SourcePredictor()


def _now() -> str:
    return datetime.now().isoformat()


def _error(status: int, error: str, message: str = None, **extra):
    body: Dict[str, Any] = {"success": False, "error": error}
    if message is not None:
        body["message"] = message
    body.update(extra)
    return jsonify(body), status


def score_file_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Score a validated partner envelope"""
    rows = validate_partner_envelope(payload)
    results, summary = score_batch(normalize_batch(InputFormat.PARTNER, rows))
    return {
        "success": True,
        "fileProcessingSummary": {
            "totalRows": payload.get("totalRows"),
            "processedRows": payload.get("processedRows"),
            "errorRows": payload.get("errorRows"),
            "hmpiCalculations": {
                "successful": summary["successful"],
                "failed": summary["failed"],
                "total": summary["total"]
            }
        },
        "statistics": summary["statistics"],
        "results": results,
        "originalSummary": payload.get("summary"),
        "calculationDate": _now()
    }


def _read_uploaded_csv() -> str:
    upload = request.files.get('csvFile')
    if upload is None or not upload.filename:
        raise ValidationError('No CSV file uploaded')
    try:
        return upload.read().decode('utf-8-sig')
    except UnicodeDecodeError as e:
        raise ValidationError('CSV file must be UTF-8 encoded') from e


# Flask application
app = Flask(__name__)
app.config['MAX_CONTENT_LENGTH'] = settings.max_upload_mb * 1024 * 1024

# Configure CORS for the dashboard
CORS(app, resources={
    r"/api/*": {
        "origins": settings.cors_origins,
        "methods": ["GET", "POST", "OPTIONS"],
        "allow_headers": ["Content-Type", "Authorization"]
    }
})


@app.route('/health', methods=['GET'])
def health():
    return jsonify({
        "status": "healthy",
        "service": "Heavy Metal Pollution Index API",
        "version": __version__,
        "timestamp": _now()
    })


@app.route('/api/hmpi/health', methods=['GET'])
def hmpi_health():
    return jsonify({
        "success": True,
        "module": "HMPI Calculation",
        "status": "OK",
        "supportedFormats": [fmt.value for fmt in InputFormat],
        "timestamp": _now(),
        "standardLimits": dict(STANDARD_LIMITS)
    })


@app.route('/api/hmpi/calculate', methods=['POST'])
def calculate():
    """Single sample in the dataset layout (Fe_ppm, As_ppb, U_ppb, F_mgL)"""
    try:
        sample_data = request.get_json(silent=True)
        if not isinstance(sample_data, dict):
            return _error(400, 'Request body must be a valid JSON object')

        try:
            sample = normalize_dataset_row(sample_data)
        except ValidationError as e:
            return _error(400, e.message, missingFields=e.missing_fields, example=DATASET_EXAMPLE)

        result = score_sample(sample)
        if result["success"]:
            return jsonify(result)
        return jsonify(result), 400

    except Exception as e:
        logger.error(f"HMPI calculation error: {e}", exc_info=True)
        return _error(500, 'HMPI calculation failed', str(e))


@app.route('/api/hmpi/calculate/bulk', methods=['POST'])
def calculate_bulk():
    """Many dataset-layout samples; failures are reported per sample"""
    try:
        body = request.get_json(silent=True) or {}
        samples = body.get('samples') if isinstance(body, dict) else None
        try:
            rows = validate_collection(samples, 'samples')
        except ValidationError as e:
            return _error(400, 'Invalid request format', e.message)

        logger.info(f"Received bulk request with {len(rows)} samples")
        results, summary = score_batch(normalize_batch(InputFormat.DATASET, rows))
        return jsonify({
            "success": True,
            "summary": {
                "totalSamples": summary["total"],
                "successfulCalculations": summary["successful"],
                "failedCalculations": summary["failed"],
                "statistics": summary["statistics"]
            },
            "results": results,
            "calculationDate": _now()
        })

    except Exception as e:
        logger.error(f"Bulk calculation error: {e}", exc_info=True)
        return _error(500, 'Bulk HMPI calculation failed', str(e))


@app.route('/api/hmpi/calculate/from-file', methods=['POST'])
def calculate_from_file():
    """Partner file envelope: {success: true, data: [...]}"""
    try:
        payload = request.get_json(silent=True)
        try:
            return jsonify(score_file_payload(payload))
        except ValidationError as e:
            return _error(400, e.message, expected=FILE_EXAMPLE)

    except Exception as e:
        logger.error(f"File processing error: {e}", exc_info=True)
        return _error(500, 'File data processing failed', str(e))


@app.route('/api/hmpi/categories', methods=['GET'])
def categories():
    return jsonify({"success": True, "data": describe_categories()})


@app.route('/api/csv/parse', methods=['POST'])
def parse_csv():
    """Decode an uploaded CSV into the partner envelope without scoring"""
    try:
        try:
            envelope = process_csv_text(_read_uploaded_csv())
        except ValidationError as e:
            return _error(400, e.message, 'Please upload a valid CSV file')
        return jsonify(envelope)

    except Exception as e:
        logger.error(f"CSV parse error: {e}", exc_info=True)
        return _error(500, 'CSV processing failed', str(e))


@app.route('/api/csv/upload-csv', methods=['POST'])
def upload_csv():
    """Decode an uploaded CSV and score it as a partner file"""
    try:
        try:
            envelope = process_csv_text(_read_uploaded_csv())
        except ValidationError as e:
            return _error(400, e.message, 'Please upload a valid CSV file')

        logger.info(f"CSV upload: {envelope['processedRows']} rows parsed, "
                    f"{envelope['errorRows']} rejected")
        try:
            result = score_file_payload(envelope)
        except ValidationError as e:
            return _error(400, e.message, 'File data array is empty', rowErrors=envelope['errors'])
        result["rowErrors"] = envelope["errors"]
        return jsonify(result)

    except Exception as e:
        logger.error(f"CSV upload error: {e}", exc_info=True)
        return _error(500, 'CSV processing failed', str(e))


@app.route('/api/results/saveResults', methods=['POST'])
def save_results():
    try:
        body = request.get_json(silent=True) or {}
        results = body.get('results') if isinstance(body, dict) else None
        if not isinstance(results, list):
            return _error(400, 'Invalid request format', 'Request must contain a "results" array')

        saved = get_results_store().save_results(r for r in results if isinstance(r, dict))
        return jsonify({"message": "Results Saved SuccessFully!!", "saved": saved})

    except UpstreamError as e:
        return _error(500, 'error in saving file', e.message)
    except Exception as e:
        logger.error(f"Save results error: {e}", exc_info=True)
        return _error(500, 'error in saving file', str(e))


@app.route('/api/results/fetchResults', methods=['GET'])
def fetch_results():
    try:
        return jsonify(get_results_store().fetch_results())
    except UpstreamError as e:
        return _error(500, 'error in fetching results', e.message)
    except Exception as e:
        logger.error(f"Fetch results error: {e}", exc_info=True)
        return _error(500, 'error in fetching results', str(e))


@app.route('/api/results/map', methods=['GET'])
def results_map():
    """Folium map of the persisted results"""
    try:
        html = build_results_map(get_results_store().fetch_results())
        resp = make_response(html)
        resp.headers['Content-Type'] = 'text/html; charset=utf-8'
        return resp
    except UpstreamError as e:
        logger.error(f"/api/results/map error: {e.message}")
        return ("<html><body><p>Map error</p></body></html>", 500)


@app.route('/api/results/plot', methods=['GET'])
def results_plot():
    """
    PNG chart of average HMPI per area
    Query parameters:
    - by: 'state' (default) or 'district'
    - chart: 'bar' (default) or 'line'
    - top: number of areas to show (default: 10)
    """
    by = request.args.get('by', default='state', type=str)
    chart_type = request.args.get('chart', default='bar', type=str)
    top = request.args.get('top', default=10, type=int)
    try:
        agg = aggregate_hmpi_by_area(get_results_store().fetch_results(), by=by)
    except UpstreamError as e:
        return _error(500, 'error in fetching results', e.message)

    if not agg:
        return _error(404, 'No stored results to plot')
    png = render_hmpi_plot(agg[:max(1, top)], chart_type=chart_type, by=by, top=top)
    resp = make_response(png)
    resp.headers['Content-Type'] = 'image/png'
    return resp


@app.route('/api/predict/source', methods=['POST'])
def predict_source():
    try:
        body = request.get_json(silent=True) or {}
        results = body.get('results') if isinstance(body, dict) else None
        if not isinstance(results, list):
            return _error(400, 'Invalid request format', 'Request must contain a "results" array')

        scored = [r for r in results if isinstance(r, dict) and r.get('success')]
        return jsonify(get_source_predictor().predict(scored))

    except UpstreamError as e:
        return _error(500, 'error while predicting the pollution source', e.message)
    except Exception as e:
        logger.error(f"Source prediction error: {e}", exc_info=True)
        return _error(500, 'error while predicting the pollution source', str(e))


def signal_handler(sig, frame):
    logger.info('Gracefully shutting down Flask server')
    close_mongo_client()
    sys.exit(0)


if __name__ == '__main__':
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info(f"Starting HMPI API on {settings.host}:{settings.port}")
    logger.info("Available endpoints:")
    logger.info("  POST /api/hmpi/calculate - Single sample (dataset layout)")
    logger.info("  POST /api/hmpi/calculate/bulk - Many samples (dataset layout)")
    logger.info("  POST /api/hmpi/calculate/from-file - Partner file envelope")
    logger.info("  GET  /api/hmpi/categories - Tiers, limits and formulas")
    logger.info("  POST /api/csv/upload-csv - CSV upload, scored")
    logger.info("  POST /api/results/saveResults, GET /api/results/fetchResults")
    logger.info("  POST /api/predict/source - Pollution source prediction")
    logger.info("  GET /health - Health check")

    app.run(host=settings.host, port=settings.port, debug=settings.debug, threaded=True)
