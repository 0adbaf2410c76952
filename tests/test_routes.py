import pytest

from inventory_forecast import db
from inventory_forecast.models import InventoryItem, utcnow

FORECAST_URL = '/api/inventory-forecast'
SCENARIOS_URL = '/api/inventory-scenarios'

VALID_SETTINGS = {
    'discount_settings': {'0-30': 0, '31-60': 10, '61-90': 20, '90+': 30},
    'sales_distribution': {'0-30': 40, '31-60': 30, '61-90': 20, '90+': 10},
}


# =============================================================================
# FORECAST
# =============================================================================

def test_forecast_is_not_found_before_first_refresh(client):
    response = client.get(FORECAST_URL)
    assert response.status_code == 404
    assert response.get_json()['error']['code'] == 'NOT_FOUND'


def test_refresh_builds_and_stores_forecast(client, inventory, sales_goals):
    response = client.post(f'{FORECAST_URL}/refresh')
    assert response.status_code == 200
    forecast = response.get_json()['forecast']

    assert len(forecast['weekly_projections']) == 12
    assert forecast['current_state']['total_retail_value'] == pytest.approx(4000)
    assert forecast['current_state']['total_inventory_cost'] == pytest.approx(1600)
    assert forecast['current_state']['total_discounted_value'] == pytest.approx(3700)
    assert forecast['valuation']['excluded_count'] == 1

    stored = client.get(FORECAST_URL).get_json()
    assert stored['version'] == forecast['version']
    assert stored['needs_refresh'] is False


def test_refresh_flags_short_weeks_and_reorder_date(client, inventory, sales_goals):
    forecast = client.post(f'{FORECAST_URL}/refresh').get_json()['forecast']

    # Roughly 2,700 of weekly sales against 4,000 of stock and a six week buffer
    assert forecast['first_below_threshold_week'] == 0
    assert forecast['reorder_by_date'] == utcnow().date().isoformat()
    for week in forecast['weekly_projections']:
        expected = week['ending_discounted_value'] < week['projected_sales'] * 6
        assert week['is_below_threshold'] is expected


def test_refresh_with_period_override(client, inventory, sales_goals):
    response = client.post(f'{FORECAST_URL}/refresh', json={'forecast_period_weeks': 4})
    assert response.status_code == 200
    assert len(response.get_json()['forecast']['weekly_projections']) == 4


def test_refresh_rejects_invalid_period(client, inventory, sales_goals):
    response = client.post(f'{FORECAST_URL}/refresh', json={'forecast_period_weeks': 0})
    assert response.status_code == 400
    assert response.get_json()['error']['details']['field'] == 'forecast_period_weeks'


def test_refresh_without_sellable_stock_keeps_previous_state(client, sales_goals):
    db.session.add(InventoryItem(product_id='EMPTY', name='Empty', current_stock=0, retail_price=10, cost_price=5))
    db.session.commit()

    response = client.post(f'{FORECAST_URL}/refresh')
    assert response.status_code == 422
    assert response.get_json()['error']['error'] == 'EmptyInventoryError'
    assert client.get(FORECAST_URL).status_code == 404


def test_refresh_without_sales_goals(client, inventory):
    response = client.post(f'{FORECAST_URL}/refresh')
    assert response.status_code == 422
    assert 'Missing sales goal' in response.get_json()['error']['message']


def test_failed_refresh_leaves_stored_forecast_untouched(client, inventory, sales_goals):
    first = client.post(f'{FORECAST_URL}/refresh').get_json()['forecast']

    InventoryItem.query.update({'current_stock': 0})
    db.session.commit()

    assert client.post(f'{FORECAST_URL}/refresh').status_code == 422
    assert client.get(FORECAST_URL).get_json()['version'] == first['version']


# =============================================================================
# CONFIGURATION
# =============================================================================

def test_patch_config_validates_scalars(client):
    response = client.patch(f'{FORECAST_URL}/config', json={'minimum_weeks_buffer': 0})
    assert response.status_code == 400

    response = client.patch(f'{FORECAST_URL}/config', json={'weeks': 4})
    assert response.status_code == 400


def test_patch_config_updates_stored_document(client, inventory, sales_goals):
    client.post(f'{FORECAST_URL}/refresh')

    response = client.patch(f'{FORECAST_URL}/config', json={'lead_time_weeks': 4})
    assert response.status_code == 200
    assert response.get_json()['configuration']['lead_time_weeks'] == 4
    assert response.get_json()['needs_refresh'] is False

    forecast = client.get(FORECAST_URL).get_json()
    assert forecast['configuration']['lead_time_weeks'] == 4
    assert forecast['configuration']['minimum_weeks_buffer'] == 6


def test_patch_config_without_forecast(client):
    body = client.patch(f'{FORECAST_URL}/config', json={'forecast_period_weeks': 8}).get_json()
    assert body['configuration']['forecast_period_weeks'] == 8
    assert body['needs_refresh'] is False


def test_patching_period_marks_forecast_for_refresh(client, inventory, sales_goals):
    client.post(f'{FORECAST_URL}/refresh')

    body = client.patch(f'{FORECAST_URL}/config', json={'forecast_period_weeks': 8}).get_json()
    assert body['needs_refresh'] is True

    forecast = client.get(FORECAST_URL).get_json()
    assert len(forecast['weekly_projections']) == 12
    assert forecast['configuration']['forecast_period_weeks'] == 8
    assert forecast['needs_refresh'] is True

    client.post(f'{FORECAST_URL}/refresh')
    forecast = client.get(FORECAST_URL).get_json()
    assert len(forecast['weekly_projections']) == 8
    assert forecast['needs_refresh'] is False


def test_patch_config_requires_json(client):
    response = client.patch(f'{FORECAST_URL}/config', data='not json')
    assert response.status_code == 400


def test_bucket_settings_defaults(client):
    settings = client.get(f'{FORECAST_URL}/settings').get_json()
    assert settings['discount_settings'] == {'0-30': 0, '31-60': 5, '61-90': 10, '90+': 15}
    assert sum(settings['sales_distribution'].values()) == 100


def test_bucket_settings_rejects_bad_distribution(client):
    bad = dict(VALID_SETTINGS, sales_distribution={'0-30': 40, '31-60': 30, '61-90': 20, '90+': 9})
    response = client.put(f'{FORECAST_URL}/settings', json=bad)

    assert response.status_code == 400
    assert response.get_json()['error']['code'] == 'CONFIGURATION_INVARIANT'
    assert client.get(f'{FORECAST_URL}/settings').get_json()['sales_distribution']['0-30'] == 25


def test_bucket_settings_recompute_forecast(client, inventory, sales_goals):
    response = client.put(f'{FORECAST_URL}/settings', json=VALID_SETTINGS)
    assert response.status_code == 200
    body = response.get_json()

    assert body['recomputed'] is True
    # 120 day old hoodies now lose 30% instead of 15%
    assert body['forecast']['current_state']['total_discounted_value'] == pytest.approx(2000 + 1400)
    assert body['forecast']['configuration']['sales_distribution']['0-30'] == 40


def test_bucket_settings_saved_without_recompute_when_data_missing(client):
    body = client.put(f'{FORECAST_URL}/settings', json=VALID_SETTINGS).get_json()

    assert body['recomputed'] is False
    assert body['forecast'] is None
    assert client.get(f'{FORECAST_URL}/settings').get_json()['discount_settings']['90+'] == 30


def test_weekday_distribution_round_trip(client):
    days = {'monday': 15, 'tuesday': 15, 'wednesday': 15, 'thursday': 15,
            'friday': 15, 'saturday': 15, 'sunday': 10}
    assert client.put(f'{FORECAST_URL}/weekday-distribution', json=days).status_code == 200
    assert client.get(f'{FORECAST_URL}/weekday-distribution').get_json() == days

    uneven = dict(days, sunday=20)
    assert client.put(f'{FORECAST_URL}/weekday-distribution', json=uneven).status_code == 400


# =============================================================================
# SCENARIOS
# =============================================================================

def test_default_scenarios(client):
    scenarios = client.get(SCENARIOS_URL).get_json()
    assert [s['scenario_type'] for s in scenarios] == ['conservative', 'base', 'optimistic']
    assert scenarios[0]['haircut_value'] == 0.30


def test_update_scenario_rejects_full_margin(client):
    response = client.put(f'{SCENARIOS_URL}/base', json={'gross_margin': 1.0})
    assert response.status_code == 400
    assert response.get_json()['error']['details']['field'] == 'gross_margin'


def test_update_unknown_scenario(client):
    assert client.put(f'{SCENARIOS_URL}/pessimistic', json={'gross_margin': 0.5}).status_code == 400


def test_update_scenario(client):
    response = client.put(f'{SCENARIOS_URL}/base', json={'haircut_type': 'dollar', 'haircut_value': 100})
    assert response.status_code == 200
    scenario = response.get_json()
    assert scenario['haircut_type'] == 'dollar'
    assert scenario['gross_margin'] == 0.55


def test_scenario_calculations(client, inventory, sales_goals):
    response = client.get(f'{SCENARIOS_URL}/calculations')
    assert response.status_code == 200
    results = {r['scenario_type']: r for r in response.get_json()}

    assert set(results) == {'conservative', 'base', 'optimistic'}
    conservative = results['conservative']
    assert conservative['adjusted_inventory_value'] == pytest.approx(1120)
    assert conservative['revenue_potential'] == pytest.approx(2240)
    assert conservative['reorder_needed'] is True
    assert conservative['minimum_spend'] == pytest.approx(
        (conservative['total_12_week_sales_goal'] - 2240) * 0.5
    )


def test_ignored_scenarios_are_not_calculated(client, inventory, sales_goals):
    client.put(f'{SCENARIOS_URL}/optimistic', json={'ignored': True})
    results = client.get(f'{SCENARIOS_URL}/calculations').get_json()
    assert [r['scenario_type'] for r in results] == ['conservative', 'base']


def test_scenario_calculations_without_inventory(client, sales_goals):
    assert client.get(f'{SCENARIOS_URL}/calculations').status_code == 422


# =============================================================================
# INVENTORY
# =============================================================================

def test_summary_is_cached_until_forced(client, inventory):
    first = client.get('/api/inventory/summary').get_json()
    assert first['total_retail_value'] == pytest.approx(4000)
    assert first['gross_margin'] == pytest.approx(60)

    db.session.add(InventoryItem(
        product_id='SOCK-WHT', name='Socks', current_stock=10, retail_price=10, cost_price=2,
        shrinkage_factor=1.0, last_received_date=utcnow()
    ))
    db.session.commit()

    assert client.get('/api/inventory/summary').get_json()['total_retail_value'] == pytest.approx(4000)
    refreshed = client.get('/api/inventory/summary?forceRefresh=true').get_json()
    assert refreshed['total_retail_value'] == pytest.approx(4100)


def test_inventory_value_by_category(client, inventory):
    body = client.get('/api/inventory/value').get_json()
    assert body['success'] is True
    data = body['data']
    assert data['total_retail_value'] == pytest.approx(4000)
    assert data['total_cost_value'] == pytest.approx(1600)
    assert data['by_category']['Tops']['item_count'] == 2
    assert data['by_category']['Accessories']['total_units'] == 0


def test_adjust_factors_invalidates_summary(client, inventory):
    client.get('/api/inventory/summary')

    response = client.post('/api/inventory/adjust', json={'category': 'Tops', 'shrinkage_factor': 0.5})
    assert response.status_code == 200
    assert response.get_json()['updated_count'] == 2

    summary = client.get('/api/inventory/summary').get_json()
    assert summary['total_inventory_cost'] == pytest.approx(800)


def test_adjust_requires_selector(client, inventory):
    assert client.post('/api/inventory/adjust', json={'discount_factor': 0.9}).status_code == 400


# =============================================================================
# SALES GOALS
# =============================================================================

def test_sales_goals_upsert_and_list(client):
    response = client.put('/api/sales/goals', json={'goals': [
        {'month': '2030-03', 'goal': 5000},
        {'month': '2030-04', 'goal': 6500.5},
    ]})
    assert response.status_code == 200
    assert [g['month'] for g in response.get_json()] == ['2030-03', '2030-04']

    client.put('/api/sales/goals', json=[{'month': '2030-03', 'goal': 5500}])

    goals = client.get('/api/sales/goals?year=2030').get_json()
    assert len(goals) == 12
    assert goals[2]['goal'] == 5500
    assert goals[3]['goal'] == 6500.5
    assert goals[0]['goal'] is None


def test_sales_goals_reject_negative(client):
    response = client.put('/api/sales/goals', json=[{'month': '2030-03', 'goal': -1}])
    assert response.status_code == 400
    goals = client.get('/api/sales/goals?year=2030').get_json()
    assert goals[2]['goal'] is None
