"""Pytest configuration and fixtures."""

import os

# Settings are read at import time, so the test environment must be set first
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("DEBUG", "true")

import pytest
from decimal import Decimal
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stockpilot.core.security import create_access_token
from stockpilot.db.base import Base
from stockpilot.db.session import enable_sqlite_foreign_keys, get_db
from stockpilot.main import app
# Import all models to ensure they're registered with Base.metadata
from stockpilot.models import *  # noqa: F401,F403
from stockpilot.models.location import Location
from stockpilot.models.product import Product
from stockpilot.models.requisition import RequiredProduct, Requisition, RequisitionStatus
from stockpilot.models.supplier import Supplier
from stockpilot.schemas.purchase_order import PurchaseOrderCreate, PurchaseOrderDetailCreate
from stockpilot.services.purchase_order_service import PurchaseOrderService

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

ADMIN_ID = 1
EMPLOYEE_ID = 2


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    from stockpilot.core.rate_limit import limiter
    limiter.enabled = False
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _headers(user_id: int, role: str) -> dict:
    token = create_access_token(
        data={"sub": str(user_id), "email": f"{role}@example.com", "role": role}
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers() -> dict:
    return _headers(ADMIN_ID, "admin")


@pytest.fixture
def employee_headers() -> dict:
    return _headers(EMPLOYEE_ID, "employee")


# ==================== CATALOG ====================

@pytest.fixture
def test_supplier(db_session: Session) -> Supplier:
    """Create a test supplier."""
    supplier = Supplier(
        name="Test Supplier",
        contact_phone="+1234567890",
        contact_email="supplier@example.com",
        is_active=True,
    )
    db_session.add(supplier)
    db_session.commit()
    db_session.refresh(supplier)
    return supplier


@pytest.fixture
def test_location(db_session: Session) -> Location:
    """Create the default receiving location."""
    location = Location(
        name="Main Warehouse",
        description="Default receiving dock",
        is_default=True,
        active=True,
    )
    db_session.add(location)
    db_session.commit()
    db_session.refresh(location)
    return location


@pytest.fixture
def second_location(db_session: Session) -> Location:
    location = Location(name="Back Store", is_default=False, active=True)
    db_session.add(location)
    db_session.commit()
    db_session.refresh(location)
    return location


@pytest.fixture
def test_products(db_session: Session, test_supplier: Supplier) -> list:
    """Two active products, A and B."""
    products = [
        Product(name="Product A", sku="SKU-A", unit="pcs", supplier_id=test_supplier.id, active=True),
        Product(name="Product B", sku="SKU-B", unit="kg", supplier_id=test_supplier.id, active=True),
    ]
    db_session.add_all(products)
    db_session.commit()
    for product in products:
        db_session.refresh(product)
    return products


@pytest.fixture
def product_a(test_products) -> Product:
    return test_products[0]


@pytest.fixture
def product_b(test_products) -> Product:
    return test_products[1]


@pytest.fixture
def test_requisition(db_session: Session, product_a: Product, product_b: Product) -> Requisition:
    """A quoted requisition for 10 x A and 5 x B."""
    requisition = Requisition(
        requester_id=EMPLOYEE_ID,
        status=RequisitionStatus.QUOTED,
        required_products=[
            RequiredProduct(product_id=product_a.id, required_quantity=Decimal("10")),
            RequiredProduct(product_id=product_b.id, required_quantity=Decimal("5")),
        ],
    )
    db_session.add(requisition)
    db_session.commit()
    db_session.refresh(requisition)
    return requisition


# ==================== PURCHASE ORDERS ====================

@pytest.fixture
def order_data(test_supplier, test_requisition, product_a, product_b, test_location):
    """Quotation data for 10 x A at 2.50 and 5 x B at 4.00."""
    def build(**overrides) -> PurchaseOrderCreate:
        data = {
            "supplier_id": test_supplier.id,
            "origin_requisition_id": test_requisition.id,
            "quotation_reference_id": "Q-2026-001",
            "notes": "Initial order",
            "details": [
                PurchaseOrderDetailCreate(product_id=product_a.id, ordered_quantity=Decimal("10"),
                                          unit_price=Decimal("2.50")),
                PurchaseOrderDetailCreate(product_id=product_b.id, ordered_quantity=Decimal("5"),
                                          unit_price=Decimal("4.00")),
            ],
        }
        data.update(overrides)
        return PurchaseOrderCreate(**data)

    return build


@pytest.fixture
def po_service(db_session: Session) -> PurchaseOrderService:
    return PurchaseOrderService(db_session)


@pytest.fixture
def pending_po(po_service, order_data):
    return po_service.create(order_data(), actor_id=ADMIN_ID)


@pytest.fixture
def confirmed_po(po_service, pending_po):
    po_service.send_to_supplier(pending_po.id, ADMIN_ID)
    return po_service.confirm(pending_po.id, ADMIN_ID)
