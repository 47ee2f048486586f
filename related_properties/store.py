"""
Read-only queries against the interaction log, favorites, filter history and
property catalog. Every fetch returns a pandas DataFrame with fixed columns,
empty when nothing matches.
"""
import asyncio
from datetime import datetime
from typing import Iterable, Optional, Sequence

import pandas as pd
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .errors import StoreError
from .models import UserInteraction, Favorite, FilterUsage, FilterSequence, Property

SEEN_INTERACTION_TYPES = ("view", "click", "inquiry", "search")
# searches are too noisy to compare users on
NEIGHBOR_INTERACTION_TYPES = ("view", "click", "inquiry")

PROPERTY_COLUMNS = [
  "id", "title", "city", "district", "price", "property_type",
  "bedrooms", "bathrooms", "images", "listing_type", "status", "created_at",
]


def _frame(rows, columns) -> pd.DataFrame:
  return pd.DataFrame([tuple(r) for r in rows], columns=columns)


async def run_query(session_factory: sessionmaker, fetch, *args, **kwargs):
  """
  Runs one blocking fetch in a worker thread with its own session.
  SQLAlchemy failures surface as StoreError.
  """
  def _run():
    db = session_factory()
    try:
      return fetch(db, *args, **kwargs)
    except SQLAlchemyError as exc:
      raise StoreError(f"{fetch.__name__} failed: {exc.__class__.__name__}") from exc
    finally:
      db.close()
  return await asyncio.to_thread(_run)


def _touches(db: Session, owner, types: Sequence[str], limit: int):
  return (db.query(UserInteraction.property_id, UserInteraction.created_at)
            .filter(owner,
                    UserInteraction.interaction_type.in_(types),
                    UserInteraction.property_id.isnot(None))
            .order_by(UserInteraction.created_at.desc())
            .limit(limit)
            .all())


def fetch_user_interactions(db: Session, user_id: str, limit: int) -> pd.DataFrame:
  """Newest-first property touches of one user. columns = [property_id, created_at]"""
  rows = _touches(db, UserInteraction.user_id == user_id, SEEN_INTERACTION_TYPES, limit)
  return _frame(rows, ["property_id", "created_at"])


def fetch_session_interactions(db: Session, session_id: str, limit: int) -> pd.DataFrame:
  rows = _touches(db, UserInteraction.session_id == session_id, SEEN_INTERACTION_TYPES, limit)
  return _frame(rows, ["property_id", "created_at"])


def fetch_user_favorites(db: Session, user_id: str) -> pd.DataFrame:
  rows = (db.query(Favorite.property_id, Favorite.created_at)
            .filter(Favorite.user_id == user_id)
            .order_by(Favorite.created_at.desc())
            .all())
  return _frame(rows, ["property_id", "created_at"])


def fetch_neighbor_interactions(db: Session, user_id: str, limit: int) -> pd.DataFrame:
  """
  Most recent view/click/inquiry rows of everybody except `user_id`.
  columns = [user_id, property_id, created_at]
  """
  rows = (db.query(UserInteraction.user_id, UserInteraction.property_id, UserInteraction.created_at)
            .filter(UserInteraction.user_id.isnot(None),
                    UserInteraction.user_id != user_id,
                    UserInteraction.interaction_type.in_(NEIGHBOR_INTERACTION_TYPES),
                    UserInteraction.property_id.isnot(None))
            .order_by(UserInteraction.created_at.desc())
            .limit(limit)
            .all())
  return _frame(rows, ["user_id", "property_id", "created_at"])


def fetch_neighbor_favorites(db: Session, user_id: str, limit: int) -> pd.DataFrame:
  rows = (db.query(Favorite.user_id, Favorite.property_id, Favorite.created_at)
            .filter(Favorite.user_id != user_id)
            .order_by(Favorite.created_at.desc())
            .limit(limit)
            .all())
  return _frame(rows, ["user_id", "property_id", "created_at"])


def fetch_follow_up_filters(db: Session, filter_id: str, limit: int) -> pd.DataFrame:
  """
  "What filter did people pick next": distinct follow-ups of `filter_id`
  ranked by how often the transition was recorded.
  columns = [filter_id, occurrences]
  """
  occurrences = func.count(FilterSequence.id).label("occurrences")
  rows = (db.query(FilterSequence.current_filter_id, occurrences)
            .filter(FilterSequence.previous_filter_id == filter_id)
            .group_by(FilterSequence.current_filter_id)
            .order_by(occurrences.desc(), FilterSequence.current_filter_id.asc())
            .limit(limit)
            .all())
  return _frame(rows, ["filter_id", "occurrences"])


def fetch_filter_usages(db: Session, filter_ids: Sequence[str]) -> pd.DataFrame:
  columns = ["id", "location", "listing_type", "bedrooms", "price_min", "price_max"]
  if not filter_ids:
    return pd.DataFrame(columns=columns)
  rows = (db.query(*[getattr(FilterUsage, c) for c in columns])
            .filter(FilterUsage.id.in_(list(filter_ids)))
            .all())
  return _frame(rows, columns)


def search_properties(db: Session, statuses: Sequence[str], limit: int,
                      location: Optional[str] = None, listing_type: Optional[str] = None,
                      bedrooms: Optional[int] = None, price_min: Optional[float] = None,
                      price_max: Optional[float] = None,
                      exclude: Iterable[str] = ()) -> pd.DataFrame:
  """
  Bounded catalog query for one saved filter. City is matched as a
  case-insensitive substring of `location`, bedrooms as a minimum.
  columns = [property_id]
  """
  q = db.query(Property.id).filter(Property.status.in_(list(statuses)))
  if location:
    q = q.filter(func.lower(Property.city).like(f"%{location.strip().lower()}%"))
  if listing_type:
    q = q.filter(Property.listing_type == listing_type)
  if bedrooms is not None:
    q = q.filter(Property.bedrooms >= int(bedrooms))
  if price_min is not None:
    q = q.filter(Property.price >= float(price_min))
  if price_max is not None:
    q = q.filter(Property.price <= float(price_max))
  exclude = list(exclude)
  if exclude:
    q = q.filter(Property.id.not_in(exclude))

  rows = q.order_by(Property.created_at.desc(), Property.id.asc()).limit(limit).all()
  return _frame(rows, ["property_id"])


def fetch_trending(db: Session, since: datetime, statuses: Sequence[str], limit: int,
                   exclude: Iterable[str] = ()) -> pd.DataFrame:
  """
  Favorite counts per approved property since `since`.
  columns = [property_id, favorites]
  """
  favorite_count = func.count(Favorite.id).label("favorite_count")
  q = (db.query(Favorite.property_id, favorite_count)
         .join(Property, Property.id == Favorite.property_id)
         .filter(Favorite.created_at >= since, Property.status.in_(list(statuses))))
  exclude = list(exclude)
  if exclude:
    q = q.filter(Favorite.property_id.not_in(exclude))

  rows = (q.group_by(Favorite.property_id)
           .order_by(favorite_count.desc(), func.max(Favorite.created_at).desc(),
                     Favorite.property_id.asc())
           .limit(limit)
           .all())
  return _frame(rows, ["property_id", "favorites"])


def fetch_newest(db: Session, statuses: Sequence[str], limit: int,
                 exclude: Iterable[str] = ()) -> pd.DataFrame:
  return search_properties(db, statuses, limit, exclude=exclude)


def fetch_properties(db: Session, ids: Sequence[str], statuses: Sequence[str]) -> pd.DataFrame:
  """Catalog rows for `ids`, restricted to recommendable statuses."""
  if not ids:
    return pd.DataFrame(columns=PROPERTY_COLUMNS)
  rows = (db.query(*[getattr(Property, c) for c in PROPERTY_COLUMNS])
            .filter(Property.id.in_(list(ids)), Property.status.in_(list(statuses)))
            .all())
  return _frame(rows, PROPERTY_COLUMNS)
