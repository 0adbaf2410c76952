"""
Inventory Forecast - Flask Application Entry Point

Run this file to start the local forecast server.
Usage: python run.py [workbook.xlsx]

Passing a workbook imports its Inventory and SalesGoals sheets before the
server starts. The API is available at http://localhost:5000/api
"""

import logging
import os
import sys

from inventory_forecast import create_app
from inventory_forecast.data_import import import_workbook
from inventory_forecast.models import InventoryItem, SalesGoal

app = create_app()
logger = logging.getLogger('run')


def init_database(workbook_path=None):
    """Import a workbook if given and report what the database holds"""
    with app.app_context():
        if workbook_path:
            if not os.path.exists(workbook_path):
                logger.error(f"Workbook not found: {workbook_path}")
                sys.exit(1)
            results = import_workbook(workbook_path)
            logger.info(
                f"Imported {results['inventory_records']} inventory records "
                f"({results['estimated_costs']} with estimated cost) and {results['sales_goals']} sales goals"
            )

        item_count = InventoryItem.query.count()
        goal_count = SalesGoal.query.count()
        if item_count == 0:
            logger.info('Database has no inventory yet. POST a workbook to /api/import to load one.')
        else:
            logger.info(f"Database contains {item_count} inventory items and {goal_count} monthly goals.")


if __name__ == '__main__':
    init_database(sys.argv[1] if len(sys.argv) > 1 else None)

    logger.info('Starting server on http://localhost:5000')
    app.run(debug=True, host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
