import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from inventory_forecast import create_app, db
from inventory_forecast.models import InventoryItem, SalesGoal, utcnow


def add_months(month: date, count: int) -> date:
    index = month.year * 12 + month.month - 1 + count
    return date(index // 12, index % 12 + 1, 1)


@pytest.fixture
def app():
    """Application bound to a fresh in-memory database."""
    app = create_app({'SQLALCHEMY_DATABASE_URI': 'sqlite://', 'TESTING': True})
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sales_goals(app):
    """A 12,000 goal for every month from last month to eight months out."""
    this_month = utcnow().date().replace(day=1)
    goals = [
        SalesGoal(month=add_months(this_month, offset), goal=12000)
        for offset in range(-1, 9)
    ]
    db.session.add_all(goals)
    db.session.commit()
    return goals


@pytest.fixture
def inventory(app):
    now = utcnow()
    items = [
        InventoryItem(
            product_id='TEE-BLK-M', name='Tee - Black / M', category='Tops',
            current_stock=40, retail_price=50, cost_price=20, shrinkage_factor=1.0,
            last_received_date=now - timedelta(days=10),
        ),
        InventoryItem(
            product_id='HOOD-GRY-L', name='Hoodie - Grey / L', category='Tops',
            current_stock=20, retail_price=100, cost_price=40, shrinkage_factor=1.0,
            last_received_date=now - timedelta(days=120),
        ),
        InventoryItem(
            product_id='CAP-RED', name='Cap - Red', category='Accessories',
            current_stock=0, retail_price=25, cost_price=10,
            last_received_date=now - timedelta(days=40),
        ),
    ]
    db.session.add_all(items)
    db.session.commit()
    return items
