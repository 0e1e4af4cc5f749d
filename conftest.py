# conftest.py
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select
from sqlalchemy.pool import StaticPool

from stockledger.db import Base, SessionLocal, make_engine
from stockledger.main import init_db
from stockledger.models import (
    Asset, Condition, DepartmentType, Item, ItemType, Location, Property, StockBalance, User,
)
from stockledger.schemas.slips import SlipIn
from stockledger.services.slips import create_slip


@pytest.fixture()
def engine():
    eng = make_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture()
def db(engine):
    with SessionLocal(bind=engine) as s:
        yield s


@pytest.fixture()
def actor(db):
    u = User(name="Store Admin", role="ADMIN")
    db.add(u); db.commit()
    return u.id


@pytest.fixture()
def seed(db):
    """Hotel with a store, two department locations, stock and asset items.

    bulb: 50 on hand at store. chair A (GOOD) and chair B (NEW) sit in the
    store; chair S is scrapped.
    """
    hotel = Property(name="Seaside Hotel")
    annex = Property(name="Annex")
    db.add_all([hotel, annex]); db.flush()

    store = Location(property_id=hotel.id, name="Main Store")
    kitchen = Location(property_id=hotel.id, name="Kitchen")
    laundry = Location(property_id=hotel.id, name="Laundry")
    annex_store = Location(property_id=annex.id, name="Annex Store")
    db.add_all([store, kitchen, laundry, annex_store]); db.flush()

    bulb = Item(name="LED Bulb 9W", item_type=ItemType.STOCK, unit="pcs", reorder_level=Decimal("5"))
    soap = Item(name="Hand Soap", item_type=ItemType.STOCK, unit="pcs")
    chair = Item(name="Banquet Chair", item_type=ItemType.ASSET, unit="pcs")
    kettle = Item(name="Electric Kettle", item_type=ItemType.ASSET, unit="pcs")
    db.add_all([bulb, soap, chair, kettle]); db.flush()

    chair_a = Asset(item_id=chair.id, asset_tag="CHR-0001", condition=Condition.GOOD, current_location_id=store.id)
    chair_b = Asset(item_id=chair.id, asset_tag="CHR-0002", condition=Condition.NEW, current_location_id=store.id)
    chair_s = Asset(item_id=chair.id, asset_tag="CHR-0099", condition=Condition.SCRAP, current_location_id=store.id)
    kettle_k = Asset(item_id=kettle.id, asset_tag="KTL-0001", condition=Condition.GOOD, current_location_id=kitchen.id)
    db.add_all([chair_a, chair_b, chair_s, kettle_k]); db.flush()

    db.add_all([
        StockBalance(item_id=bulb.id, location_id=store.id, qty_on_hand=Decimal("50")),
        StockBalance(item_id=soap.id, location_id=store.id, qty_on_hand=Decimal("3")),
    ])
    db.commit()

    return SimpleNamespace(
        property_id=hotel.id, annex_id=annex.id,
        store=store.id, kitchen=kitchen.id, laundry=laundry.id, annex_store=annex_store.id,
        bulb=bulb.id, soap=soap.id, chair=chair.id, kettle=kettle.id,
        chair_a=chair_a.id, chair_b=chair_b.id, chair_s=chair_s.id, kettle_k=kettle_k.id,
    )


@pytest.fixture()
def post_slip(db, seed, actor):
    """Build and post a slip for the seeded hotel; keyword args go to SlipIn."""
    def _post(slip_type, lines, **kw):
        kw.setdefault("property_id", seed.property_id)
        kw.setdefault("department", DepartmentType.HOUSEKEEPING)
        body = SlipIn(slip_type=slip_type, lines=lines, **kw)
        return create_slip(db, body, actor)
    return _post


@pytest.fixture()
def count(db):
    def _count(model, *where):
        return db.scalar(select(func.count()).select_from(model).where(*where))
    return _count
