import os

# Settings are read at import time
os.environ.setdefault("LOG_DIR", "")
os.environ.setdefault("EMAIL_ENABLED", "false")
os.environ.setdefault("MEMBERSHIP_EXPIRY_ENABLED", "false")
os.environ.setdefault("SQLITE_DATABASE_URI", "sqlite:///:memory:")

from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clinicpos.core.config import settings
from clinicpos.core.deps import get_db
from clinicpos.core.security import create_access_token, get_password_hash
from clinicpos.db import session as db_session
from clinicpos.db.base import Base
from clinicpos.main import app
from clinicpos.models import Patient, Product, User


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine, monkeypatch, tmp_path):
    factory = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    # Background jobs open their own sessions
    monkeypatch.setattr(db_session, "SessionLocal", factory)
    monkeypatch.setattr(settings, "INVOICE_DIR", str(tmp_path / "invoices"))
    monkeypatch.setattr(settings, "EMAIL_ENABLED", False)
    return factory


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _create_user(db, username, role, password="secret123", **kwargs):
    user = User(
        username=username,
        email=f"{username}@clinic.test",
        password=get_password_hash(password),
        full_name=username.title(),
        role=role,
        **{"is_active": True, **kwargs})
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


def auth_headers(user: User) -> dict:
    token = create_access_token(user.id, user.role, user.username)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def admin_user(db):
    return await _create_user(db, "admin", "admin")


@pytest.fixture
async def staff_user(db):
    return await _create_user(db, "staff", "staff")


@pytest.fixture
async def super_admin(db):
    return await _create_user(db, "root", "super_admin")


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture
def staff_headers(staff_user):
    return auth_headers(staff_user)


@pytest.fixture
def make_user(db):
    async def factory(username, role="staff", **kwargs):
        return await _create_user(db, username, role, **kwargs)
    return factory


@pytest.fixture
def make_product(db):
    counter = {"n": 0}

    async def factory(name="Lavender Oil", stock=100, price=20, cost=8, unit_name="ml", **kwargs):
        counter["n"] += 1
        product = Product(
            name=name,
            sku=kwargs.pop("sku", f"TEST-{counter['n']:04d}"),
            unit_name=unit_name,
            current_stock=Decimal(str(stock)),
            selling_price=Decimal(str(price)),
            cost_price=Decimal(str(cost)),
            **kwargs)
        db.add(product)
        await db.commit()
        await db.refresh(product)
        return product
    return factory


@pytest.fixture
def make_patient(db):
    async def factory(first_name="Alice", last_name="Tan", discount=0, **kwargs):
        patient = Patient(
            first_name=first_name,
            last_name=last_name,
            email=kwargs.pop("email", f"{first_name.lower()}@patient.test"),
            discount_percentage=Decimal(str(discount)),
            **kwargs)
        db.add(patient)
        await db.commit()
        await db.refresh(patient)
        return patient
    return factory


def item_payload(product, quantity=1, discount=0, **overrides):
    item = {
        "product_id": product.id,
        "item_type": "product",
        "name": product.name,
        "quantity": quantity,
        "unit_price": float(product.selling_price),
        "discount_amount": discount,
        "unit_name": product.unit_name,
    }
    item.update(overrides)
    return item
