"""
Forecast services - glue between the database and the pure algorithms.

Each function loads what it needs, runs the computation and only then
writes, so a failed computation leaves stored state untouched.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from flask import current_app

from . import db
from .algorithms import (
    AGE_BUCKETS,
    WEEKDAYS,
    SCENARIO_HORIZON_WEEKS,
    DEFAULT_DISCOUNT_SETTINGS,
    DEFAULT_SALES_DISTRIBUTION,
    DEFAULT_WEEKDAY_DISTRIBUTION,
    calculate_aggregate_values,
    calculate_weekly_sales_goals,
    evaluate_scenarios,
    generate_forecast,
    round_currency,
)
from .exceptions import InsufficientDataError, NotFoundError, ValidationError
from .models import InventoryItem, SalesGoal, ForecastSettings, InventoryScenario, SCENARIO_TYPES, utcnow
from .store import ForecastStore
from .validation import (
    validate_adjustment,
    validate_bucket_settings,
    validate_config_patch,
    validate_positive_integer,
    validate_sales_goal,
    validate_scenario_update,
    validate_weekday_distribution,
)

logger = logging.getLogger(__name__)

NEEDS_REFRESH_AFTER = timedelta(hours=1)


# =============================================================================
# SETTINGS
# =============================================================================

def default_settings() -> List[tuple]:
    """(name, value, description) for every forecast setting"""
    defaults = [
        ('forecast_period_weeks', 12, 'Number of weeks to project'),
        ('minimum_weeks_buffer', 6, 'Weeks of sales discounted inventory must cover'),
        ('lead_time_weeks', 2, 'Weeks between placing and receiving an order'),
    ]
    for bucket in AGE_BUCKETS:
        defaults.append((
            f'discount_{bucket}', DEFAULT_DISCOUNT_SETTINGS[bucket],
            f'Value discount (%) for stock aged {bucket} days'
        ))
    for bucket in AGE_BUCKETS:
        defaults.append((
            f'sales_distribution_{bucket}', DEFAULT_SALES_DISTRIBUTION[bucket],
            f'Share of sales (%) expected from stock aged {bucket} days'
        ))
    for day in WEEKDAYS:
        defaults.append((
            f'weekday_share_{day}', DEFAULT_WEEKDAY_DISTRIBUTION[day],
            f'Share of weekly sales (%) falling on {day.title()}'
        ))
    return defaults


def get_forecast_settings() -> Dict[str, float]:
    """Get forecast settings as dictionary"""
    settings = ForecastSettings.query.all()
    result = {s.name: s.value for s in settings}

    # Add defaults if not present
    for name, value, _ in default_settings():
        if result.get(name) is None:
            result[name] = value

    return result


def save_settings(values: Dict[str, float]):
    for name, value in values.items():
        setting = ForecastSettings.query.filter_by(name=name).first()
        if setting:
            setting.value = float(value)
        else:
            db.session.add(ForecastSettings(name=name, value=float(value)))
    db.session.commit()


def get_configuration() -> Dict:
    """Structured forecast configuration, as embedded in the forecast document"""
    settings = get_forecast_settings()
    return {
        'forecast_period_weeks': int(settings['forecast_period_weeks']),
        'minimum_weeks_buffer': int(settings['minimum_weeks_buffer']),
        'lead_time_weeks': int(settings['lead_time_weeks']),
        'discount_settings': {b: settings[f'discount_{b}'] for b in AGE_BUCKETS},
        'sales_distribution': {b: settings[f'sales_distribution_{b}'] for b in AGE_BUCKETS},
        'weekday_distribution': {d: settings[f'weekday_share_{d}'] for d in WEEKDAYS},
    }


def get_store() -> ForecastStore:
    return ForecastStore(db.session, max_retries=current_app.config.get('FORECAST_WRITE_RETRIES', 3))


# =============================================================================
# INPUT SNAPSHOTS
# =============================================================================

def load_inventory_records() -> List[Dict]:
    return [item.to_dict() for item in InventoryItem.query.order_by(InventoryItem.product_id).all()]


def load_monthly_goals() -> Dict[date, float]:
    return {g.month: g.goal for g in SalesGoal.query.all()}


# =============================================================================
# FORECAST
# =============================================================================

def refresh_forecast(forecast_period_weeks=None, now: Optional[datetime] = None,
                     store: Optional[ForecastStore] = None) -> Dict:
    """Recompute the forecast from live inventory and goals and store it"""
    configuration = get_configuration()
    if forecast_period_weeks is not None:
        configuration['forecast_period_weeks'] = validate_positive_integer(
            forecast_period_weeks, 'forecast_period_weeks'
        )

    now = now or utcnow()
    logger.info(f"Refreshing forecast for {configuration['forecast_period_weeks']} weeks from {now.date()}")

    document = generate_forecast(load_inventory_records(), load_monthly_goals(), configuration, now)
    saved = (store or get_store()).save(document)

    logger.info(
        f"Forecast refreshed: retail {round_currency(document['current_state']['total_retail_value'])}, "
        f"first short week {document['first_below_threshold_week']}"
    )
    return saved


def get_forecast(store: Optional[ForecastStore] = None, now: Optional[datetime] = None) -> Dict:
    document = (store or get_store()).get()
    if document is None:
        raise NotFoundError('No forecast found')

    last_updated = datetime.fromisoformat(document['current_state']['last_updated'])
    document['needs_refresh'] = (
        (now or utcnow()) - last_updated > NEEDS_REFRESH_AFTER
        or not projections_match_configuration(document)
    )
    return document


def projections_match_configuration(document: Dict) -> bool:
    """False once the period was patched without recomputing the projections"""
    weeks = document['configuration']['forecast_period_weeks']
    return len(document.get('weekly_projections') or []) == weeks


def update_forecast_config(data: Dict, store: Optional[ForecastStore] = None) -> Dict:
    """
    Patch the scalar configuration fields without recomputing.

    ``needs_refresh`` is true when the stored projections no longer cover
    the patched forecast period.
    """
    values = validate_config_patch(data)
    save_settings(values)
    configuration = get_configuration()
    document = (store or get_store()).update_configuration(configuration)
    logger.info(f"Forecast configuration updated: {values}")
    return {
        'configuration': configuration,
        'needs_refresh': document is not None and not projections_match_configuration(document),
    }


def get_bucket_settings() -> Dict:
    configuration = get_configuration()
    return {
        'discount_settings': configuration['discount_settings'],
        'sales_distribution': configuration['sales_distribution'],
    }


def replace_bucket_settings(data: Dict, store: Optional[ForecastStore] = None) -> Dict:
    """
    Replace the discount / sales-distribution pair and recompute.

    The settings are kept even when there is not yet enough data to
    recompute; the response says whether the forecast was rebuilt.
    """
    values = validate_bucket_settings(data)

    rows = {f'discount_{b}': v for b, v in values['discount_settings'].items()}
    rows.update({f'sales_distribution_{b}': v for b, v in values['sales_distribution'].items()})
    save_settings(rows)

    result = dict(values, recomputed=False, forecast=None)
    try:
        result['forecast'] = refresh_forecast(store=store)
        result['recomputed'] = True
    except InsufficientDataError as e:
        logger.warning(f"Settings saved but forecast not recomputed: {e}")
        result['reason'] = e.message
    return result


def get_weekday_distribution() -> Dict[str, float]:
    return get_configuration()['weekday_distribution']


def replace_weekday_distribution(data: Dict) -> Dict[str, float]:
    values = validate_weekday_distribution(data)
    save_settings({f'weekday_share_{day}': v for day, v in values.items()})
    return values


# =============================================================================
# SCENARIOS
# =============================================================================

def list_scenarios() -> List[Dict]:
    return [s.to_dict() for s in InventoryScenario.query.order_by(InventoryScenario.id).all()]


def update_scenario(scenario_type: str, data: Dict) -> Dict:
    if scenario_type not in SCENARIO_TYPES:
        raise ValidationError(f"Unknown scenario type '{scenario_type}'", field='scenario_type')

    scenario = InventoryScenario.query.filter_by(scenario_type=scenario_type).first()
    if scenario is None:
        raise NotFoundError(f"Scenario '{scenario_type}' not found")

    values = validate_scenario_update(scenario_type, data, scenario.to_dict())
    for field, value in values.items():
        setattr(scenario, field, value)
    db.session.commit()
    logger.info(f"Scenario {scenario_type} updated")
    return scenario.to_dict()


def calculate_scenarios(now: Optional[datetime] = None) -> List[Dict]:
    """ScenarioResult for every scenario that is not ignored"""
    now = now or utcnow()
    configuration = get_configuration()

    aggregate = calculate_aggregate_values(
        load_inventory_records(), configuration['discount_settings'], now.date()
    )
    weekly_goals = calculate_weekly_sales_goals(
        now.date(), SCENARIO_HORIZON_WEEKS, load_monthly_goals(), configuration['weekday_distribution']
    )
    return evaluate_scenarios(list_scenarios(), aggregate['total_inventory_cost'], weekly_goals)


# =============================================================================
# INVENTORY
# =============================================================================

def _percentage(numerator: float, denominator: float) -> float:
    return round(numerator / denominator * 100, 2) if denominator > 0 else 0


def get_inventory_summary(force_refresh: bool = False, cache=None, now: Optional[datetime] = None) -> Dict:
    """Aggregate valuation with margins, served through the summary cache"""
    cache = cache or current_app.extensions['summary_cache']
    computed = []

    def compute():
        computed.append(True)
        configuration = get_configuration()
        totals = calculate_aggregate_values(
            load_inventory_records(), configuration['discount_settings'], (now or utcnow()).date()
        )
        retail = totals['total_retail_value']
        cost = totals['total_inventory_cost']
        discounted = totals['total_discounted_value']
        return dict(
            totals,
            gross_margin=_percentage(retail - cost, retail),
            adjusted_gross_margin=_percentage(discounted - cost, discounted),
            calculated_at=(now or utcnow()).isoformat(),
        )

    summary = cache.get_or_compute(compute, force_refresh=force_refresh)
    if not computed:
        logger.debug('Returning cached inventory summary')
    return summary


def get_inventory_value() -> Dict:
    """Totals with each item's own discount and shrinkage factors applied"""
    by_category = {}
    totals = {'total_retail_value': 0.0, 'total_cost_value': 0.0}

    for item in InventoryItem.query.all():
        retail = item.retail_value * (item.discount_factor or 0) * (item.shrinkage_factor or 0)
        cost = item.cost_value
        totals['total_retail_value'] += retail
        totals['total_cost_value'] += cost

        category = by_category.setdefault(item.category or 'Uncategorized', {
            'retail_value': 0.0, 'cost_value': 0.0, 'item_count': 0, 'total_units': 0
        })
        category['retail_value'] += retail
        category['cost_value'] += cost
        category['item_count'] += 1
        category['total_units'] += item.current_stock or 0

    totals['total_potential_profit'] = totals['total_retail_value'] - totals['total_cost_value']
    totals['by_category'] = by_category
    return totals


def update_adjustment_factors(data: Dict, cache=None) -> Dict:
    values = validate_adjustment(data)

    query = InventoryItem.query
    if values['product_id']:
        query = query.filter_by(product_id=values['product_id'])
    else:
        query = query.filter_by(category=values['category'])

    items = query.all()
    for item in items:
        for field, value in values['factors'].items():
            setattr(item, field, value)
    db.session.commit()

    (cache or current_app.extensions['summary_cache']).invalidate()
    logger.info(f"Updated adjustment factors on {len(items)} items")
    return {
        'success': True,
        'updated_count': len(items),
        'new_total_value': get_inventory_value(),
    }


# =============================================================================
# SALES GOALS
# =============================================================================

def list_sales_goals(year: int) -> List[Dict]:
    stored = {
        g.month: g.goal
        for g in SalesGoal.query.filter(
            SalesGoal.month >= date(year, 1, 1), SalesGoal.month <= date(year, 12, 1)
        ).all()
    }
    return [
        {
            'month': f'{year}-{month:02d}',
            'year': year,
            'month_number': month,
            'goal': stored.get(date(year, month, 1)),
        }
        for month in range(1, 13)
    ]


def upsert_sales_goals(goals: List[Dict]) -> List[Dict]:
    """Validate every goal first, then write them together"""
    if not isinstance(goals, list) or not goals:
        raise ValidationError('Expected a non-empty list of goals', field='goals')

    values = [validate_sales_goal(goal) for goal in goals]
    saved = []
    for value in values:
        goal = SalesGoal.query.filter_by(month=value['month']).first()
        if goal:
            goal.goal = value['goal']
        else:
            goal = SalesGoal(month=value['month'], goal=value['goal'])
            db.session.add(goal)
        saved.append(goal)
    db.session.commit()
    return [g.to_dict() for g in saved]
