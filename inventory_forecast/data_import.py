"""
Data Import Module - Import data from Excel files into the database

Handles importing:
- Inventory snapshot from the Inventory sheet (replaces the current snapshot)
- Monthly sales goals from the SalesGoals sheet

Expected Inventory columns (row 1 is the header):
product_id | name | category | current_stock | retail_price | cost_price | last_received_date

Expected SalesGoals columns:
month (YYYY-MM or a date) | goal
"""

import logging
import openpyxl
from datetime import datetime, date
from typing import Dict, Optional
import os

from . import db
from .algorithms import ESTIMATED_COST_RATIO
from .exceptions import ValidationError
from .models import (
    InventoryItem, SalesGoal, ForecastSettings, InventoryScenario,
    COST_SOURCE_ACTUAL, COST_SOURCE_ESTIMATED
)
from .validation import validate_sales_goal

logger = logging.getLogger(__name__)

INVENTORY_COLUMNS = (
    'product_id', 'name', 'category', 'current_stock',
    'retail_price', 'cost_price', 'last_received_date'
)

DEFAULT_SCENARIOS = (
    # (scenario_type, haircut_type, haircut_value, gross_margin)
    ('conservative', 'percent', 0.30, 0.50),
    ('base', 'percent', 0.20, 0.55),
    ('optimistic', 'percent', 0.10, 0.60),
)


def parse_date(value) -> Optional[datetime]:
    """Parse various date formats from Excel"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        for fmt in ['%Y-%m-%d', '%m/%d/%Y']:
            try:
                return datetime.strptime(value.strip().split()[0], fmt)
            except ValueError:
                continue
    return None


def parse_number(value) -> Optional[float]:
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def import_workbook(excel_path: str) -> Dict:
    """
    Import inventory and sales goals from a workbook.

    Returns a summary of imported data. Nothing is committed unless every
    sheet imports cleanly.
    """
    if not os.path.exists(excel_path):
        raise FileNotFoundError(f"Excel file not found: {excel_path}")

    wb = openpyxl.load_workbook(excel_path, data_only=True)

    results = {
        'inventory_records': 0,
        'estimated_costs': 0,
        'skipped_rows': 0,
        'sales_goals': 0,
    }

    try:
        if 'Inventory' in wb.sheetnames:
            imported, estimated, skipped = import_inventory(wb['Inventory'])
            results['inventory_records'] = imported
            results['estimated_costs'] = estimated
            results['skipped_rows'] += skipped

        if 'SalesGoals' in wb.sheetnames:
            results['sales_goals'] = import_sales_goals(wb['SalesGoals'])

        db.session.commit()

    except Exception:
        db.session.rollback()
        raise
    finally:
        wb.close()

    logger.info(f"Workbook import finished: {results}")
    return results


def import_inventory(ws) -> tuple:
    """Replace the inventory snapshot with the rows of the Inventory sheet"""
    items = {}
    estimated = 0
    skipped = 0

    for row in ws.iter_rows(min_row=2, values_only=True):
        values = dict(zip(INVENTORY_COLUMNS, row))
        product_id = values.get('product_id')
        if product_id is None or str(product_id).strip() == '':
            continue

        stock = parse_number(values.get('current_stock'))
        retail_price = parse_number(values.get('retail_price'))
        if stock is None or retail_price is None or stock < 0 or retail_price < 0 or not stock.is_integer():
            logger.warning(f"Skipping inventory row for {product_id}: invalid stock or retail price")
            skipped += 1
            continue

        cost_price = parse_number(values.get('cost_price'))
        cost_source = COST_SOURCE_ACTUAL
        if cost_price is None or cost_price < 0:
            cost_price = retail_price * ESTIMATED_COST_RATIO
            cost_source = COST_SOURCE_ESTIMATED
            estimated += 1

        product_id = str(product_id).strip()
        items[product_id] = InventoryItem(
            product_id=product_id,
            name=str(values.get('name') or product_id),
            category=str(values.get('category') or 'Uncategorized'),
            current_stock=int(stock),
            retail_price=retail_price,
            cost_price=cost_price,
            cost_source=cost_source,
            last_received_date=parse_date(values.get('last_received_date')),
        )

    if estimated:
        logger.warning(f"{estimated} inventory rows have no cost, assumed {ESTIMATED_COST_RATIO:.0%} of retail")

    InventoryItem.query.delete()
    db.session.add_all(items.values())
    return len(items), estimated, skipped


def import_sales_goals(ws) -> int:
    """Upsert one goal per month from the SalesGoals sheet"""
    records_created = 0

    for row_number, row in enumerate(ws.iter_rows(min_row=2, values_only=True), start=2):
        if not row or row[0] is None:
            continue
        month, goal = row[0], parse_number(row[1] if len(row) > 1 else None)
        if goal is None:
            raise ValidationError(f"SalesGoals row {row_number}: goal must be a number", field='goal')

        value = validate_sales_goal({'month': month, 'goal': goal})
        record = SalesGoal.query.filter_by(month=value['month']).first()
        if record:
            record.goal = value['goal']
        else:
            db.session.add(SalesGoal(month=value['month'], goal=value['goal']))
            db.session.flush()
        records_created += 1

    return records_created


def init_default_settings():
    """Initialize default forecast settings"""
    from .services import default_settings

    for name, value, description in default_settings():
        setting = ForecastSettings.query.filter_by(name=name).first()
        if not setting:
            setting = ForecastSettings(name=name, value=value, description=description)
            db.session.add(setting)

    db.session.commit()


def init_default_scenarios():
    """Create the three scenarios if they are missing"""
    for scenario_type, haircut_type, haircut_value, gross_margin in DEFAULT_SCENARIOS:
        if not InventoryScenario.query.filter_by(scenario_type=scenario_type).first():
            db.session.add(InventoryScenario(
                scenario_type=scenario_type,
                haircut_type=haircut_type,
                haircut_value=haircut_value,
                gross_margin=gross_margin,
            ))

    db.session.commit()
