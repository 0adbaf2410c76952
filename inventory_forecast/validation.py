"""
Write-time validation for configuration, sales goals and scenarios.

Reads never re-validate; anything that reaches the database has passed here.
"""

import math
from datetime import date, datetime
from typing import Dict, Optional

from .algorithms import AGE_BUCKETS, WEEKDAYS, parse_bucket_label
from .exceptions import ValidationError, ConfigurationInvariantError
from .models import SCENARIO_TYPES, HAIRCUT_TYPES

DISTRIBUTION_TOLERANCE = 0.01

SCALAR_CONFIG_FIELDS = ('forecast_period_weeks', 'minimum_weeks_buffer', 'lead_time_weeks')


def _as_number(value, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field} must be a number", field=field)
    if math.isnan(value) or math.isinf(value):
        raise ValidationError(f"{field} must be a finite number", field=field)
    return value


def validate_positive_integer(value, field: str) -> int:
    """At least 1 and whole"""
    number = _as_number(value, field)
    if number < 1:
        raise ValidationError(f"{field} must be at least 1", field=field)
    if number != int(number):
        raise ValidationError(f"{field} must be a whole number", field=field)
    return int(number)


def validate_config_patch(data: Dict) -> Dict:
    """Validate each scalar field present in a configuration patch"""
    if not isinstance(data, dict):
        raise ValidationError('Configuration must be an object')

    unknown = set(data) - set(SCALAR_CONFIG_FIELDS)
    if unknown:
        field = sorted(unknown)[0]
        raise ValidationError(f"Unknown configuration field '{field}'", field=field)

    return {
        field: validate_positive_integer(data[field], field)
        for field in SCALAR_CONFIG_FIELDS
        if field in data
    }


def _validate_percentage_map(values, field: str, expected_keys) -> Dict[str, float]:
    if not isinstance(values, dict):
        raise ValidationError(f"{field} must be an object", field=field)

    missing = [key for key in expected_keys if key not in values]
    extra = [key for key in values if key not in expected_keys]
    if missing or extra:
        raise ConfigurationInvariantError(
            f"{field} must have exactly the keys {', '.join(expected_keys)}",
            field=field,
            details={'missing': missing, 'unexpected': extra}
        )

    result = {}
    for key in expected_keys:
        number = _as_number(values[key], f"{field}.{key}")
        if number < 0 or number > 100:
            raise ValidationError(f"{field}.{key} must be between 0 and 100", field=f"{field}.{key}")
        result[key] = number
    return result


def _validate_sums_to_100(values: Dict[str, float], field: str):
    total = sum(values.values())
    if abs(total - 100) > DISTRIBUTION_TOLERANCE:
        raise ConfigurationInvariantError(
            f"{field} must total 100, got {round(total, 4)}",
            field=field,
            details={'total': total}
        )


def validate_bucket_coverage(buckets):
    """Buckets must start at 0, leave no gaps and end open-ended"""
    parsed = sorted((parse_bucket_label(label) for label in buckets), key=lambda bounds: bounds[0])
    if not parsed or parsed[0][0] != 0:
        raise ConfigurationInvariantError('Age buckets must start at 0 days', field='discount_settings')
    if parsed[-1][1] is not None:
        raise ConfigurationInvariantError('The oldest age bucket must be open-ended', field='discount_settings')

    for (low, high), (next_low, _) in zip(parsed, parsed[1:]):
        if high is None or next_low not in (high, high + 1) or high < low:
            raise ConfigurationInvariantError('Age buckets must be contiguous', field='discount_settings')


def validate_bucket_settings(data: Dict) -> Dict:
    """
    Validate the discount / sales-distribution pair.

    Both maps are keyed by the canonical age buckets with values in [0, 100];
    the sales distribution must also total 100.
    """
    if not isinstance(data, dict):
        raise ValidationError('Settings must be an object')

    discount_settings = _validate_percentage_map(
        data.get('discount_settings'), 'discount_settings', AGE_BUCKETS
    )
    sales_distribution = _validate_percentage_map(
        data.get('sales_distribution'), 'sales_distribution', AGE_BUCKETS
    )
    validate_bucket_coverage(discount_settings.keys())
    _validate_sums_to_100(sales_distribution, 'sales_distribution')

    return {
        'discount_settings': discount_settings,
        'sales_distribution': sales_distribution,
    }


def validate_weekday_distribution(data: Dict) -> Dict[str, float]:
    values = _validate_percentage_map(data, 'weekday_distribution', WEEKDAYS)
    _validate_sums_to_100(values, 'weekday_distribution')
    return values


def parse_month(value) -> date:
    """'2026-11' -> date(2026, 11, 1)"""
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return value.replace(day=1)
    try:
        year, month = str(value).strip()[:7].split('-')
        return date(int(year), int(month), 1)
    except ValueError:
        raise ValidationError(f"Invalid month '{value}', expected YYYY-MM", field='month')


def validate_sales_goal(data: Dict) -> Dict:
    if not isinstance(data, dict):
        raise ValidationError('Sales goal must be an object')
    if 'month' not in data:
        raise ValidationError('month is required', field='month')
    goal = _as_number(data.get('goal'), 'goal')
    if goal < 0:
        raise ValidationError('goal must not be negative', field='goal')
    return {'month': parse_month(data['month']), 'goal': goal}


def _validate_margin(value, field: str) -> Optional[float]:
    margin = _as_number(value, field)
    if margin < 0 or margin >= 1:
        raise ValidationError(f"{field} must be at least 0 and less than 1", field=field)
    return margin


def validate_scenario_update(scenario_type: str, data: Dict, current: Optional[Dict] = None) -> Dict:
    """
    Validate a scenario update, merged over the scenario's current values.

    Fields not present in ``data`` keep their current value.
    """
    if scenario_type not in SCENARIO_TYPES:
        raise ValidationError(f"Unknown scenario type '{scenario_type}'", field='scenario_type')
    if not isinstance(data, dict):
        raise ValidationError('Scenario must be an object')

    merged = dict(current or {})
    merged.update({key: value for key, value in data.items() if key != 'scenario_type'})

    haircut_type = merged.get('haircut_type')
    if haircut_type not in HAIRCUT_TYPES:
        raise ValidationError("haircut_type must be 'percent' or 'dollar'", field='haircut_type')

    haircut_value = _as_number(merged.get('haircut_value'), 'haircut_value')
    if haircut_value < 0:
        raise ValidationError('haircut_value must not be negative', field='haircut_value')
    if haircut_type == 'percent' and haircut_value > 1:
        raise ValidationError('Percent haircut must be a decimal between 0 and 1', field='haircut_value')

    gross_margin = _validate_margin(merged.get('gross_margin'), 'gross_margin')

    margin_for_min_spend = merged.get('gross_margin_for_min_spend')
    if margin_for_min_spend is not None:
        margin_for_min_spend = _validate_margin(margin_for_min_spend, 'gross_margin_for_min_spend')

    ignored = merged.get('ignored', False)
    if not isinstance(ignored, bool):
        raise ValidationError('ignored must be true or false', field='ignored')

    return {
        'scenario_type': scenario_type,
        'haircut_type': haircut_type,
        'haircut_value': haircut_value,
        'gross_margin': gross_margin,
        'gross_margin_for_min_spend': margin_for_min_spend,
        'ignored': ignored,
    }


def validate_adjustment(data: Dict) -> Dict:
    """Selector (product_id or category) plus the factors to set"""
    if not isinstance(data, dict):
        raise ValidationError('Adjustment must be an object')
    if not data.get('product_id') and not data.get('category'):
        raise ValidationError('Either product_id or category must be specified', field='product_id')

    factors = {}
    for field in ('discount_factor', 'shrinkage_factor'):
        if data.get(field) is None:
            continue
        value = _as_number(data[field], field)
        if value < 0 or value > 1:
            raise ValidationError(f"{field} must be between 0 and 1", field=field)
        factors[field] = value

    if not factors:
        raise ValidationError('Nothing to update: pass discount_factor or shrinkage_factor')

    return {
        'product_id': data.get('product_id'),
        'category': data.get('category'),
        'factors': factors,
    }
