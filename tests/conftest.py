import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite:///./related_properties_test.db")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from related_properties.config import Settings
from related_properties.db import Base
from related_properties.models import (
  UserInteraction, Favorite, FilterUsage, FilterSequence, Property,
)

NOW = datetime.now(timezone.utc)


def ago(**kwargs):
  return NOW - timedelta(**kwargs)


@pytest.fixture
def test_settings():
  return Settings(DATABASE_URL="sqlite://")


@pytest.fixture
def session_factory(tmp_path):
  engine = create_engine(f"sqlite:///{tmp_path / 'catalog.db'}",
                         connect_args={"check_same_thread": False})
  Base.metadata.create_all(bind=engine)
  yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
  engine.dispose()


@pytest.fixture
def broken_session_factory(tmp_path):
  # no tables: every query fails
  engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}",
                         connect_args={"check_same_thread": False})
  yield sessionmaker(bind=engine)
  engine.dispose()


@pytest.fixture
def seed(session_factory):
  def _seed(*rows):
    db = session_factory()
    try:
      db.add_all(rows)
      db.commit()
    finally:
      db.close()
  return _seed


def make_property(pid, status="approved", created=None, **fields):
  values = dict(
    title=f"Property {pid}", city="Jakarta", district="Menteng", price=1_000_000_000.0,
    property_type="house", bedrooms=2, bathrooms=1, images=[f"https://img.example/{pid}.jpg"],
    listing_type="sale",
  )
  values.update(fields)
  return Property(id=pid, status=status, created_at=created or ago(days=60), **values)


def view(user_id, property_id, when=None, kind="view", session_id=None):
  return UserInteraction(user_id=user_id, session_id=session_id, interaction_type=kind,
                         property_id=property_id, created_at=when or ago(hours=1))


def favorite(user_id, property_id, when=None):
  return Favorite(user_id=user_id, property_id=property_id, created_at=when or ago(days=1))


def filter_usage(fid, **fields):
  return FilterUsage(id=fid, **fields)


def sequence(previous, current, when=None):
  return FilterSequence(previous_filter_id=previous, current_filter_id=current,
                        created_at=when or ago(days=1))
