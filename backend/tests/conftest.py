"""
Pytest fixtures for inventory cutover tests.

Provides the test app (in-memory SQLite), a per-test clean database, a fake
POS source installed on the app, and catalog fixtures.
"""

import pytest

from inventory_cutover import create_app
from inventory_cutover.errors import ExternalSourceError
from inventory_cutover.extensions import db
from inventory_cutover.models import CatalogMapping, Location, Product
from inventory_cutover.services.pos_source import InventoryCount
from inventory_cutover.time_utils import utcnow


class FakePosSource:
    """In-memory PosSource: inventory per external location, catalog per variation id."""

    def __init__(self):
        self.inventory = {}
        self.catalog = {}
        self.unit_costs = {}
        self.cost_calls = []
        self.failing_costs = set()
        self.failing_locations = set()
        self.catalog_error = None
        self.catalog_calls = []
        self.invalidated = []

    def set_inventory(self, external_location_id, rows):
        """rows: iterable of (external_id, quantity)."""
        self.inventory[external_location_id] = [
            InventoryCount(external_id=ext_id, external_location_id=external_location_id, quantity=qty)
            for ext_id, qty in rows
        ]

    def list_inventory(self, external_location_id):
        if external_location_id in self.failing_locations:
            raise ExternalSourceError(f"POS unavailable for {external_location_id}")
        return list(self.inventory.get(external_location_id, []))

    def fetch_catalog_items(self, variation_ids):
        self.catalog_calls.append(list(variation_ids))
        if self.catalog_error is not None:
            raise self.catalog_error
        return {v: self.catalog[v] for v in variation_ids if v in self.catalog}

    def fetch_unit_cost(self, variation_id):
        self.cost_calls.append(variation_id)
        if variation_id in self.failing_costs:
            raise ExternalSourceError(f"No cost endpoint for {variation_id}")
        return self.unit_costs.get(variation_id)

    def invalidate(self, variation_ids=None):
        self.invalidated.append(None if variation_ids is None else list(variation_ids))


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'POS_ACCESS_TOKEN': 'test-token',
        'CATALOG_FETCH_CHUNK_SIZE': 2,
        'CATALOG_FETCH_MAX_WORKERS': 2,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def pos_source(app):
    """Install a FakePosSource on the app for the duration of a test."""
    original = app.extensions["pos_source"]
    fake = FakePosSource()
    app.extensions["pos_source"] = fake
    yield fake
    app.extensions["pos_source"] = original


@pytest.fixture(scope='function')
def location(db_session):
    """Location connected to POS location LOC-1."""
    loc = Location(name="Main Street", external_location_id="LOC-1", is_active=True)
    db_session.add(loc)
    db_session.commit()
    return loc


@pytest.fixture(scope='function')
def second_location(db_session):
    """Location connected to POS location LOC-2."""
    loc = Location(name="Harbor", external_location_id="LOC-2", is_active=True)
    db_session.add(loc)
    db_session.commit()
    return loc


@pytest.fixture(scope='function')
def make_product(db_session):
    """
    Factory: product + global catalog mapping.

    Metadata is marked fresh unless fresh=False, so extraction reads the
    description stored on the product instead of calling the catalog.
    """
    def _make(name, external_id, *, description=None, price_cents=None, location_id=None, fresh=True, commit=True):
        product = Product(
            name=name,
            external_name=name,
            external_description=description,
            external_synced_at=utcnow() if fresh else None,
            is_active=True,
        )
        db_session.add(product)
        db_session.flush()
        db_session.add(CatalogMapping(
            external_variation_id=external_id,
            location_id=location_id,
            product_id=product.id,
            price_cents=price_cents,
        ))
        if commit:
            db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def stocked_products(db_session, location, pos_source, make_product):
    """
    Factory: n mapped products stocked at `location`, external ids VAR-000.. in order.

    Each description carries one dated cost line, so extraction is HIGH confidence.
    """
    def _make(count, *, quantity=5, description="L $10.00 abril"):
        products = []
        rows = []
        for index in range(count):
            external_id = f"VAR-{index:03d}"
            products.append(
                make_product(f"Product {index:03d}", external_id, description=description, commit=False)
            )
            rows.append((external_id, quantity))
        db_session.commit()
        pos_source.set_inventory(location.external_location_id, rows)
        return products

    return _make

