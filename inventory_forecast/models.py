from . import db
from datetime import datetime, timezone


def utcnow():
    """Naive UTC timestamp, the convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


COST_SOURCE_ACTUAL = 'actual'
COST_SOURCE_ESTIMATED = 'estimated'

SCENARIO_TYPES = ('conservative', 'base', 'optimistic')
HAIRCUT_TYPES = ('percent', 'dollar')


class InventoryItem(db.Model):
    """Current stock snapshot for one sellable item"""
    __tablename__ = 'inventory_items'

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.String(100), unique=True, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(100), default='Uncategorized', index=True)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    retail_price = db.Column(db.Float, nullable=False, default=0)
    cost_price = db.Column(db.Float, nullable=False, default=0)
    cost_source = db.Column(db.String(20), nullable=False, default=COST_SOURCE_ACTUAL)

    # Factors for value calculation
    discount_factor = db.Column(db.Float, nullable=False, default=1.0)  # 1.0 = no discount
    shrinkage_factor = db.Column(db.Float, nullable=False, default=0.98)  # 0.98 = 2% loss rate

    last_received_date = db.Column(db.DateTime, index=True)
    last_updated = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.CheckConstraint('current_stock >= 0', name='check_stock_non_negative'),
    )

    @property
    def retail_value(self):
        return (self.current_stock or 0) * (self.retail_price or 0)

    @property
    def cost_value(self):
        return (self.current_stock or 0) * (self.cost_price or 0) * (self.shrinkage_factor or 0)

    def age_days(self, now=None):
        """Days since the item was last received, None when unknown"""
        if self.last_received_date is None:
            return None
        now = now or utcnow()
        return max(0, (now - self.last_received_date).days)

    def __repr__(self):
        return f'<InventoryItem {self.product_id}: {self.current_stock}>'

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'name': self.name,
            'category': self.category,
            'current_stock': self.current_stock,
            'retail_price': self.retail_price,
            'cost_price': self.cost_price,
            'cost_source': self.cost_source,
            'discount_factor': self.discount_factor,
            'shrinkage_factor': self.shrinkage_factor,
            'last_received_date': self.last_received_date.isoformat() if self.last_received_date else None,
        }


class SalesGoal(db.Model):
    """Revenue target for one calendar month"""
    __tablename__ = 'sales_goals'

    id = db.Column(db.Integer, primary_key=True)
    month = db.Column(db.Date, unique=True, nullable=False, index=True)  # first day of the month
    goal = db.Column(db.Float, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.CheckConstraint('goal >= 0', name='check_goal_non_negative'),
    )

    def __repr__(self):
        return f'<SalesGoal {self.month:%Y-%m}: {self.goal}>'

    def to_dict(self):
        return {
            'month': self.month.strftime('%Y-%m'),
            'year': self.month.year,
            'month_number': self.month.month,
            'goal': self.goal,
        }


class ForecastSettings(db.Model):
    """Forecast settings/configuration"""
    __tablename__ = 'forecast_settings'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    value = db.Column(db.Float)
    description = db.Column(db.String(255))

    def __repr__(self):
        return f'<Setting {self.name}: {self.value}>'


class ForecastDocument(db.Model):
    """The single live forecast, replaced wholesale on every refresh"""
    __tablename__ = 'forecast_documents'

    id = db.Column(db.Integer, primary_key=True)
    singleton_key = db.Column(db.String(20), unique=True, nullable=False, default='current')
    version = db.Column(db.Integer, nullable=False)
    payload = db.Column(db.JSON, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # UPDATE ... WHERE version = :expected, StaleDataError when another writer won
    __mapper_args__ = {'version_id_col': version}

    def __repr__(self):
        return f'<ForecastDocument v{self.version}>'


class InventoryScenario(db.Model):
    """Haircut and margin assumptions for one named scenario"""
    __tablename__ = 'inventory_scenarios'

    id = db.Column(db.Integer, primary_key=True)
    scenario_type = db.Column(db.String(20), unique=True, nullable=False)
    haircut_type = db.Column(db.String(10), nullable=False, default='percent')
    haircut_value = db.Column(db.Float, nullable=False, default=0)  # decimal percent or dollar amount
    gross_margin = db.Column(db.Float, nullable=False)  # decimal, e.g. 0.6 for 60%
    gross_margin_for_min_spend = db.Column(db.Float)
    ignored = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f'<InventoryScenario {self.scenario_type}>'

    def to_dict(self):
        return {
            'scenario_type': self.scenario_type,
            'haircut_type': self.haircut_type,
            'haircut_value': self.haircut_value,
            'gross_margin': self.gross_margin,
            'gross_margin_for_min_spend': self.gross_margin_for_min_spend,
            'ignored': self.ignored,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
