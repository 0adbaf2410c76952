"""
Forecasting Algorithms - inventory value projection and scenario analysis

Everything in this module is a pure function over plain dicts so that
refreshes and scenario calculations can run side by side without sharing
state. Persistence and request handling live in services.py / routes.py.

Two separate discounts are in play:
- age_retention_factor(): values today's stock by how long it has sat
  (configured per age bucket, e.g. 90+ days -> 15% off)
- future_distance_factor(): values a projected week by how far it is
  from today (fixed steps: >30d 0.95, >60d 0.90, >90d 0.85)
"""

import calendar
import logging
from datetime import datetime, timedelta, date
from typing import List, Dict, Optional, Tuple

from .exceptions import EmptyInventoryError, InsufficientDataError, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS & DEFAULTS
# =============================================================================

DAYS_IN_WEEK = 7

AGE_BUCKETS = ('0-30', '31-60', '61-90', '90+')

DEFAULT_DISCOUNT_SETTINGS = {
    '0-30': 0,
    '31-60': 5,
    '61-90': 10,
    '90+': 15,
}

DEFAULT_SALES_DISTRIBUTION = {
    '0-30': 25,
    '31-60': 25,
    '61-90': 25,
    '90+': 25,
}

WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')

DEFAULT_WEEKDAY_DISTRIBUTION = {
    'monday': 10,
    'tuesday': 20,
    'wednesday': 10,
    'thursday': 20,
    'friday': 10,
    'saturday': 5,
    'sunday': 25,
}

# (days beyond today, retained fraction), checked from the furthest step down
FUTURE_DISCOUNT_STEPS = (
    (90, 0.85),
    (60, 0.90),
    (30, 0.95),
)

DEFAULT_SHRINKAGE_FACTOR = 0.98
ESTIMATED_COST_RATIO = 0.5  # assumed cost when the real cost is unknown

SCENARIO_HORIZON_WEEKS = 12


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def round_currency(value: float) -> float:
    return round(value or 0, 2)


def parse_date(d) -> Optional[date]:
    """Parse date from various formats"""
    if d is None:
        return None
    if isinstance(d, datetime):
        return d.date()
    if isinstance(d, date):
        return d
    if isinstance(d, str):
        try:
            return datetime.strptime(d.split('T')[0].split()[0], '%Y-%m-%d').date()
        except ValueError:
            return None
    return None


def month_start(d: date) -> date:
    return d.replace(day=1)


def days_between(later, earlier) -> Optional[int]:
    """Whole days from ``earlier`` to ``later``, None if either is missing"""
    later_date = parse_date(later)
    earlier_date = parse_date(earlier)
    if later_date is None or earlier_date is None:
        return None
    return (later_date - earlier_date).days


# =============================================================================
# DISCOUNT SCHEDULE (inventory age)
# =============================================================================

def parse_bucket_label(label: str) -> Tuple[int, Optional[int]]:
    """
    Split an age bucket label into (floor, ceiling).

    '31-60' -> (31, 60), '90+' -> (90, None)
    """
    text = str(label).strip()
    try:
        if text.endswith('+'):
            return int(text[:-1]), None
        low, high = text.split('-')
        return int(low), int(high)
    except ValueError:
        raise ValidationError(f"Invalid age bucket label '{label}'", field=str(label))


def bucket_for_age(age_days: Optional[int], buckets) -> str:
    """
    Find the age bucket an item belongs to.

    Buckets are matched from the highest floor down; the first floor the
    age reaches wins, so an age sitting on a boundary lands in the older
    bucket. Unknown ages count as fresh (age 0).
    """
    age = max(0, age_days or 0)
    ordered = sorted(buckets, key=lambda label: parse_bucket_label(label)[0], reverse=True)
    for label in ordered:
        if age >= parse_bucket_label(label)[0]:
            return label
    return ordered[-1]


def age_retention_factor(age_days: Optional[int], discount_settings: Dict[str, float]) -> float:
    """
    Fraction of value an item keeps at the given age.

    discount_settings maps bucket label -> discount percentage (0-100).
    """
    bucket = bucket_for_age(age_days, discount_settings.keys())
    return 1 - (discount_settings[bucket] or 0) / 100.0


# =============================================================================
# FUTURE-DISTANCE DISCOUNT (forecast uncertainty)
# =============================================================================

def future_distance_factor(point_date, today) -> float:
    """Fraction of value kept by a projection point ``point_date`` days out"""
    days_ahead = days_between(point_date, today) or 0
    for threshold, factor in FUTURE_DISCOUNT_STEPS:
        if days_ahead > threshold:
            return factor
    return 1.0


def calculate_projected_discounted_value(retail_value: float, point_date, today) -> float:
    return retail_value * future_distance_factor(point_date, today)


# =============================================================================
# SALES DISTRIBUTOR
# monthly goal -> daily goals (weighted by weekday) -> weekly goals
# =============================================================================

def weekday_weights(weekday_distribution: Dict[str, float]) -> List[float]:
    """Weekday shares indexed like date.weekday() (Monday = 0)"""
    return [float(weekday_distribution.get(day, 0) or 0) for day in WEEKDAYS]


def calculate_daily_sales(monthly_goal: float, month: date, weekday_distribution: Dict[str, float]) -> List[float]:
    """
    Spread a monthly goal over the days of that month.

    Each day gets monthly_goal * share(weekday) / sum(shares of the days in
    this month), so months with five Saturdays and months with four both
    allocate exactly the monthly goal.
    """
    days_in_month = calendar.monthrange(month.year, month.month)[1]
    weights = weekday_weights(weekday_distribution)
    day_weights = [
        weights[date(month.year, month.month, day).weekday()]
        for day in range(1, days_in_month + 1)
    ]
    total_weight = sum(day_weights)

    if total_weight <= 0:
        return [monthly_goal / days_in_month] * days_in_month

    return [monthly_goal * w / total_weight for w in day_weights]


def calculate_week_sales(
    week_start: date,
    monthly_goals: Dict[date, float],
    weekday_distribution: Dict[str, float],
    daily_cache: Optional[Dict[date, List[float]]] = None
) -> float:
    """
    Sum the daily goals of the 7 days starting at week_start.

    A week that crosses a month boundary takes each day from its own
    month's allocation, never from a blended goal.
    """
    daily_cache = {} if daily_cache is None else daily_cache
    total = 0.0

    for offset in range(DAYS_IN_WEEK):
        day = week_start + timedelta(days=offset)
        key = month_start(day)
        if key not in daily_cache:
            goal = monthly_goals.get(key)
            if goal is None:
                raise InsufficientDataError(
                    f"Missing sales goal for {key:%Y-%m}",
                    details={'month': key.strftime('%Y-%m')}
                )
            daily_cache[key] = calculate_daily_sales(goal, key, weekday_distribution)
        total += daily_cache[key][day.day - 1]

    return total


def calculate_weekly_sales_goals(
    start_date: date,
    weeks: int,
    monthly_goals: Dict[date, float],
    weekday_distribution: Dict[str, float]
) -> List[float]:
    """Weekly sales goals for ``weeks`` consecutive weeks, rounded to cents"""
    daily_cache = {}
    weekly_goals = []
    for i in range(weeks):
        week_start = start_date + timedelta(days=i * DAYS_IN_WEEK)
        weekly_goals.append(round_currency(
            calculate_week_sales(week_start, monthly_goals, weekday_distribution, daily_cache)
        ))
    return weekly_goals


# =============================================================================
# AGGREGATE VALUATOR
# =============================================================================

def is_sellable(record: Dict) -> bool:
    return (record.get('current_stock') or 0) > 0 and (record.get('retail_price') or 0) > 0


def calculate_record_values(record: Dict, discount_settings: Dict[str, float], today) -> Dict:
    """Retail, cost and age-discounted value of one sellable record"""
    stock = record.get('current_stock') or 0
    retail_price = record.get('retail_price') or 0
    shrinkage = record.get('shrinkage_factor')
    if shrinkage is None:
        shrinkage = DEFAULT_SHRINKAGE_FACTOR

    cost_price = record.get('cost_price')
    cost_estimated = record.get('cost_source') == 'estimated'
    if cost_price is None:
        cost_price = retail_price * ESTIMATED_COST_RATIO
        cost_estimated = True

    age_days = days_between(today, record.get('last_received_date'))
    if age_days is not None:
        age_days = max(0, age_days)

    retail_value = stock * retail_price
    return {
        'retail_value': retail_value,
        'cost_value': stock * cost_price * shrinkage,
        'discounted_value': retail_value * age_retention_factor(age_days, discount_settings),
        'cost_price': cost_price,
        'cost_estimated': cost_estimated,
        'age_days': age_days,
        'age_bucket': bucket_for_age(age_days, discount_settings.keys()),
    }


def calculate_aggregate_values(records: List[Dict], discount_settings: Dict[str, float], today) -> Dict:
    """
    Reduce inventory records to total cost, retail and discounted value.

    Records without stock or without a retail price are skipped and only
    counted. Raises EmptyInventoryError when nothing sellable is left,
    since an all-zero valuation would read as "fully depleted".
    """
    totals = {
        'total_inventory_cost': 0.0,
        'total_retail_value': 0.0,
        'total_discounted_value': 0.0,
        'valid_count': 0,
        'excluded_count': 0,
        'estimated_cost_count': 0,
        'missing_age_count': 0,
    }

    for record in records:
        if not is_sellable(record):
            totals['excluded_count'] += 1
            continue

        values = calculate_record_values(record, discount_settings, today)
        totals['total_inventory_cost'] += values['cost_value']
        totals['total_retail_value'] += values['retail_value']
        totals['total_discounted_value'] += values['discounted_value']
        totals['valid_count'] += 1
        if values['cost_estimated']:
            totals['estimated_cost_count'] += 1
        if values['age_days'] is None:
            totals['missing_age_count'] += 1

    if totals['excluded_count']:
        logger.info(f"Excluded {totals['excluded_count']} records without stock or retail price")
    if totals['missing_age_count']:
        logger.warning(
            f"{totals['missing_age_count']} records have no last received date, valued as fresh stock"
        )

    if totals['valid_count'] == 0:
        raise EmptyInventoryError(details={'excluded_count': totals['excluded_count']})

    return totals


def build_inventory_snapshot(records: List[Dict], discount_settings: Dict[str, float], today) -> List[Dict]:
    """Per-item age and value rows for the age histogram"""
    snapshot = []
    for record in records:
        if not is_sellable(record):
            continue
        values = calculate_record_values(record, discount_settings, today)
        received = parse_date(record.get('last_received_date'))
        snapshot.append({
            'id': record.get('id'),
            'product_id': record.get('product_id'),
            'name': record.get('name'),
            'quantity': record.get('current_stock'),
            'retail_price': record.get('retail_price'),
            'cost_price': values['cost_price'],
            'cost_source': 'estimated' if values['cost_estimated'] else 'actual',
            'last_received_date': received.isoformat() if received else None,
            'age': values['age_days'],
            'age_bucket': values['age_bucket'],
            'retail_value': values['retail_value'],
            'discounted_value': values['discounted_value'],
        })
    return snapshot


def calculate_age_breakdown(snapshot: List[Dict], sales_distribution: Dict[str, float]) -> List[Dict]:
    """Share of retail value per age bucket, in bucket order"""
    total_retail = sum(row['retail_value'] for row in snapshot)
    ordered = sorted(sales_distribution.keys(), key=lambda label: parse_bucket_label(label)[0])

    breakdown = []
    for label in ordered:
        rows = [row for row in snapshot if row['age_bucket'] == label]
        retail_value = sum(row['retail_value'] for row in rows)
        breakdown.append({
            'bucket': label,
            'item_count': len(rows),
            'retail_value': round_currency(retail_value),
            'percentage': round(retail_value / total_retail * 100, 2) if total_retail > 0 else 0,
            'sales_share': sales_distribution[label],
        })
    return breakdown


# =============================================================================
# PROJECTION GENERATOR
# =============================================================================

def generate_weekly_projections(
    start_date: date,
    forecast_period_weeks: int,
    weekly_sales: List[float],
    aggregate_values: Dict,
    minimum_weeks_buffer: float,
    today: Optional[date] = None
) -> List[Dict]:
    """
    Deplete aggregate value week by week against the weekly sales goals.

    Always runs the whole horizon so callers can see both the first
    below-threshold week and whether later weeks recover.
    """
    today = today or start_date
    current_retail = aggregate_values.get('total_retail_value') or 0
    current_cost = aggregate_values.get('total_inventory_cost') or 0

    if not current_retail and not aggregate_values.get('total_discounted_value') and not current_cost:
        logger.info('No inventory value available for projections')
        return []

    # Discounted value is not carried over; each week rebuilds it from ending retail
    projections = []
    for i in range(forecast_period_weeks):
        week_start = start_date + timedelta(days=i * DAYS_IN_WEEK)
        week_end = week_start + timedelta(days=DAYS_IN_WEEK - 1)
        sales = round_currency(weekly_sales[i] if i < len(weekly_sales) else 0)

        ending_retail = max(0.0, current_retail - sales)
        ending_discounted = calculate_projected_discounted_value(ending_retail, week_start, today)
        cost_ratio = ending_retail / current_retail if current_retail > 0 else 0
        ending_cost = current_cost * cost_ratio

        projections.append({
            'week_start': week_start.isoformat(),
            'week_end': week_end.isoformat(),
            'projected_sales': sales,
            'ending_retail_value': ending_retail,
            'ending_discounted_value': ending_discounted,
            'ending_cost': ending_cost,
            'is_below_threshold': ending_discounted < sales * minimum_weeks_buffer,
        })

        current_retail = ending_retail
        current_cost = ending_cost

    return projections


def find_first_below_threshold(projections: List[Dict]) -> Optional[int]:
    for i, week in enumerate(projections):
        if week['is_below_threshold']:
            return i
    return None


def calculate_reorder_by_date(projections: List[Dict], lead_time_weeks: int, today: date) -> Optional[date]:
    """Latest date an order can be placed to land before the first short week"""
    first = find_first_below_threshold(projections)
    if first is None:
        return None
    week_start = parse_date(projections[first]['week_start'])
    return max(today, week_start - timedelta(weeks=lead_time_weeks))


def generate_forecast(
    records: List[Dict],
    monthly_goals: Dict[date, float],
    configuration: Dict,
    now: datetime
) -> Dict:
    """
    Build a complete forecast document from a snapshot, goals and settings.

    Returns the payload stored by ForecastStore; nothing is persisted here.
    """
    today = now.date()
    discount_settings = configuration['discount_settings']
    weeks = int(configuration['forecast_period_weeks'])

    aggregate = calculate_aggregate_values(records, discount_settings, today)
    weekly_sales = calculate_weekly_sales_goals(
        today, weeks, monthly_goals, configuration['weekday_distribution']
    )
    projections = generate_weekly_projections(
        today, weeks, weekly_sales, aggregate, configuration['minimum_weeks_buffer'], today
    )
    snapshot = build_inventory_snapshot(records, discount_settings, today)
    reorder_by = calculate_reorder_by_date(projections, int(configuration['lead_time_weeks']), today)

    return {
        'current_state': {
            'total_inventory_cost': aggregate['total_inventory_cost'],
            'total_retail_value': aggregate['total_retail_value'],
            'total_discounted_value': aggregate['total_discounted_value'],
            'last_updated': now.isoformat(),
        },
        'configuration': configuration,
        'weekly_projections': projections,
        'first_below_threshold_week': find_first_below_threshold(projections),
        'reorder_by_date': reorder_by.isoformat() if reorder_by else None,
        'inventory_data': snapshot,
        'age_breakdown': calculate_age_breakdown(snapshot, configuration['sales_distribution']),
        'valuation': {
            'valid_count': aggregate['valid_count'],
            'excluded_count': aggregate['excluded_count'],
            'estimated_cost_count': aggregate['estimated_cost_count'],
            'missing_age_count': aggregate['missing_age_count'],
        },
    }


# =============================================================================
# SCENARIO EVALUATOR
# =============================================================================

def apply_haircut(total_cost: float, haircut_type: str, haircut_value: float) -> float:
    """Mark down the inventory cost basis by a percentage or a dollar amount"""
    if haircut_type == 'percent':
        return total_cost * (1 - haircut_value)
    if haircut_type == 'dollar':
        return max(0.0, total_cost - haircut_value)
    raise ValidationError(f"Unknown haircut type '{haircut_type}'", field='haircut_type')


def calculate_revenue_potential(adjusted_inventory_value: float, gross_margin: float) -> float:
    """
    Retail revenue realised by selling the cost basis at the given margin.

    margin = (revenue - cost) / revenue, so revenue = cost / (1 - margin)
    """
    if gross_margin >= 1:
        raise ValidationError('Gross margin must be less than 1', field='gross_margin')
    return adjusted_inventory_value / (1 - gross_margin)


def evaluate_scenario(scenario: Dict, total_inventory_cost: float, weekly_sales_goals: List[float]) -> Dict:
    """Runway, reorder need and minimum spend for one scenario"""
    total_sales_goal = sum(weekly_sales_goals)
    avg_weekly_goal = total_sales_goal / len(weekly_sales_goals) if weekly_sales_goals else 0

    adjusted_value = apply_haircut(
        total_inventory_cost, scenario['haircut_type'], scenario['haircut_value']
    )
    revenue_potential = calculate_revenue_potential(adjusted_value, scenario['gross_margin'])
    runway_weeks = revenue_potential / avg_weekly_goal if avg_weekly_goal > 0 else 0
    reorder_needed = revenue_potential < total_sales_goal

    margin_for_min_spend = scenario.get('gross_margin_for_min_spend')
    if margin_for_min_spend is None:
        margin_for_min_spend = scenario['gross_margin']
    minimum_spend = (
        (total_sales_goal - revenue_potential) * (1 - margin_for_min_spend)
        if reorder_needed else 0
    )

    return {
        'scenario_type': scenario['scenario_type'],
        'adjusted_inventory_value': adjusted_value,
        'revenue_potential': revenue_potential,
        'runway_weeks': runway_weeks,
        'total_12_week_sales_goal': total_sales_goal,
        'reorder_needed': reorder_needed,
        'minimum_spend': minimum_spend,
        'gross_margin': scenario['gross_margin'],
        'gross_margin_for_min_spend': scenario.get('gross_margin_for_min_spend'),
        'haircut_type': scenario['haircut_type'],
        'haircut_value': scenario['haircut_value'],
        'ignored': scenario.get('ignored', False),
        'updated_at': scenario.get('updated_at'),
    }


def evaluate_scenarios(scenarios: List[Dict], total_inventory_cost: float, weekly_sales_goals: List[float]) -> List[Dict]:
    """Evaluate every scenario that is not ignored, each independently"""
    return [
        evaluate_scenario(scenario, total_inventory_cost, weekly_sales_goals)
        for scenario in scenarios
        if not scenario.get('ignored')
    ]
