"""
Flask Routes - API endpoints
"""

from flask import Blueprint, current_app, request, jsonify
from werkzeug.exceptions import HTTPException
from datetime import date
import logging
import os
import tempfile

from . import db
from . import services
from .data_import import import_workbook
from .exceptions import ForecastEngineError, ValidationError

logger = logging.getLogger(__name__)

# Blueprints
forecast_bp = Blueprint('forecast', __name__)
scenario_bp = Blueprint('scenarios', __name__)
inventory_bp = Blueprint('inventory', __name__)
sales_bp = Blueprint('sales', __name__)
api_bp = Blueprint('api', __name__)


def get_json_body():
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError('Request body must be JSON')
    return data


# =============================================================================
# ERROR HANDLING
# =============================================================================

def register_error_handlers(app):
    @app.errorhandler(ForecastEngineError)
    def handle_engine_error(error):
        db.session.rollback()
        if error.status_code >= 500:
            logger.error(f"{request.method} {request.path} failed: {error}")
        else:
            logger.info(f"{request.method} {request.path} rejected: {error}")
        return jsonify({'success': False, 'error': error.to_dict()}), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({
            'success': False,
            'error': {'error': error.name, 'message': error.description, 'status_code': error.code}
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        db.session.rollback()
        logger.exception(f"Unhandled error on {request.method} {request.path}")
        return jsonify({
            'success': False,
            'error': {'error': 'InternalServerError', 'message': str(error), 'status_code': 500}
        }), 500


# =============================================================================
# FORECAST
# =============================================================================

@forecast_bp.route('', methods=['GET'])
def api_get_forecast():
    """Get the current forecast, 404 until the first refresh"""
    return jsonify(services.get_forecast())


@forecast_bp.route('/refresh', methods=['POST'])
def api_refresh_forecast():
    """Recompute the forecast from live inventory and sales goals"""
    data = request.get_json(silent=True) or {}
    forecast = services.refresh_forecast(data.get('forecast_period_weeks'))
    return jsonify({'message': 'Forecast refreshed successfully', 'forecast': forecast})


@forecast_bp.route('/config', methods=['PATCH'])
def api_update_config():
    """Patch forecast_period_weeks, minimum_weeks_buffer and lead_time_weeks"""
    return jsonify(services.update_forecast_config(get_json_body()))


@forecast_bp.route('/settings', methods=['GET'])
def api_get_bucket_settings():
    return jsonify(services.get_bucket_settings())


@forecast_bp.route('/settings', methods=['PUT'])
def api_replace_bucket_settings():
    """Replace discount and sales distribution settings together"""
    return jsonify(services.replace_bucket_settings(get_json_body()))


@forecast_bp.route('/weekday-distribution', methods=['GET'])
def api_get_weekday_distribution():
    return jsonify(services.get_weekday_distribution())


@forecast_bp.route('/weekday-distribution', methods=['PUT'])
def api_replace_weekday_distribution():
    return jsonify(services.replace_weekday_distribution(get_json_body()))


# =============================================================================
# SCENARIOS
# =============================================================================

@scenario_bp.route('', methods=['GET'])
def api_list_scenarios():
    return jsonify(services.list_scenarios())


@scenario_bp.route('/calculations', methods=['GET'])
def api_scenario_calculations():
    """Runway and minimum spend for every scenario that is not ignored"""
    return jsonify(services.calculate_scenarios())


@scenario_bp.route('/<scenario_type>', methods=['PUT'])
def api_update_scenario(scenario_type):
    return jsonify(services.update_scenario(scenario_type, get_json_body()))


# =============================================================================
# INVENTORY
# =============================================================================

@inventory_bp.route('/summary', methods=['GET'])
def api_inventory_summary():
    force_refresh = request.args.get('forceRefresh', 'false').lower() == 'true'
    return jsonify(services.get_inventory_summary(force_refresh=force_refresh))


@inventory_bp.route('/value', methods=['GET'])
def api_inventory_value():
    return jsonify({'success': True, 'data': services.get_inventory_value()})


@inventory_bp.route('/adjust', methods=['POST'])
def api_adjust_factors():
    """Set discount/shrinkage factors for a product or a whole category"""
    return jsonify(services.update_adjustment_factors(get_json_body()))


# =============================================================================
# SALES GOALS
# =============================================================================

@sales_bp.route('/goals', methods=['GET'])
def api_get_goals():
    year = request.args.get('year', type=int) or date.today().year
    return jsonify(services.list_sales_goals(year))


@sales_bp.route('/goals', methods=['PUT'])
def api_update_goals():
    data = get_json_body()
    goals = data.get('goals') if isinstance(data, dict) else data
    return jsonify(services.upsert_sales_goals(goals))


# =============================================================================
# IMPORT
# =============================================================================

@api_bp.route('/import', methods=['POST'])
def api_import():
    """Import inventory and sales goals from an uploaded Excel workbook"""
    if 'file' not in request.files:
        raise ValidationError('No file provided', field='file')

    file = request.files['file']
    if file.filename == '':
        raise ValidationError('No file selected', field='file')

    if not file.filename.endswith('.xlsx'):
        raise ValidationError('File must be an Excel file (.xlsx)', field='file')

    # Save to temp file
    with tempfile.NamedTemporaryFile(delete=False, suffix='.xlsx') as tmp:
        file.save(tmp.name)
        tmp_path = tmp.name

    try:
        results = import_workbook(tmp_path)
    finally:
        os.unlink(tmp_path)

    current_app.extensions['summary_cache'].invalidate()
    return jsonify(results)
