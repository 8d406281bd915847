"""
Shared test fixtures for pickbridge tests

Provides the in-memory database, the fake Odoo server and a wired-up
FulfillmentService.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pickbridge.core.fulfillment_config import FulfillmentConfig
from pickbridge.db.base import Base
from pickbridge.services.fulfillment_service import FulfillmentService
from tests.factories import reset_sequences
from tests.fake_odoo import FakeOdoo


# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_tables(engine):
    """Create all tables for testing using SQLAlchemy metadata"""
    # Import all models to ensure they're registered with Base
    from pickbridge.models import SalesOrder, SalesOrderLine, OdooPicking  # noqa: F401

    Base.metadata.create_all(bind=engine)


def drop_tables(engine):
    """Drop all tables after testing"""
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """Create a fresh database session for each test"""
    create_tables(engine)
    reset_sequences()

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        drop_tables(engine)


@pytest.fixture
def fulfillment_config():
    """Engine config with the production defaults"""
    return FulfillmentConfig()


@pytest.fixture
def fake_odoo():
    """Odoo with stock.move.quantity_done available"""
    return FakeOdoo()


@pytest.fixture
def service(fake_odoo, fulfillment_config):
    """FulfillmentService talking to the fake Odoo"""
    return FulfillmentService(fake_odoo, fulfillment_config, batch_limit=50)


@pytest.fixture
def mug_order(fake_odoo):
    """
    Confirmed sale order S00001: 10 mugs and 5 plates on one assigned delivery.

    Returns (sale_order_id, mug_product_id, plate_product_id).
    """
    partner = fake_odoo.add_partner("Jane Doe", country_code="FR")
    mug = fake_odoo.add_product("Mug", qty_available=40)
    plate = fake_odoo.add_product("Plate", qty_available=12)
    so_id = fake_odoo.add_sale_order("S00001", [(mug, 10), (plate, 5)], partner_id=partner)
    return so_id, mug, plate
