"""
Strategy cascade: collaborative -> filter sequence -> trending.

Each strategy has the same shape, `(request, context) -> [RecommendationItem]`,
and the first one that returns something wins. Store failures inside a
non-terminal strategy are logged and count as "nothing found"; the terminal
strategy has nothing to fall back on, so its failures propagate.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, FrozenSet, List, Tuple

import pandas as pd
from sqlalchemy.orm import sessionmaker

from .config import Settings, settings as default_settings
from .errors import StoreError
from .recommender import (
  Candidate, INTERACTION, FILTER_SEQUENCE, TRENDING,
  build_seen_set, collaborative_candidates, filter_criteria, merge_filter_results,
  trending_candidates, newest_candidates,
)
from .schemas import RecommendationItem, RecommendationOut, RecommendationRequest
from .store import (
  run_query, fetch_user_interactions, fetch_session_interactions, fetch_user_favorites,
  fetch_neighbor_interactions, fetch_neighbor_favorites, fetch_follow_up_filters,
  fetch_filter_usages, search_properties, fetch_trending, fetch_newest, fetch_properties,
)

logger = logging.getLogger(__name__)


@dataclass
class RecommendationContext:
  session_factory: sessionmaker
  settings: Settings
  limit: int
  seen: FrozenSet[str] = frozenset()


Strategy = Callable[[RecommendationRequest, RecommendationContext], Awaitable[List[RecommendationItem]]]


def _records(df: pd.DataFrame) -> List[Dict]:
  return df.astype(object).where(df.notna(), None).to_dict("records")


async def collect_seen_set(request: RecommendationRequest, ctx: RecommendationContext) -> FrozenSet[str]:
  """
  Properties the requester already touched. A failed fetch degrades to an
  empty set instead of failing the request.
  """
  s = ctx.settings
  try:
    if request.user_id:
      interactions, favorites = await asyncio.gather(
        run_query(ctx.session_factory, fetch_user_interactions, request.user_id, s.SEEN_INTERACTION_LIMIT),
        run_query(ctx.session_factory, fetch_user_favorites, request.user_id),
      )
      return build_seen_set(interactions, favorites)
    if request.session_id:
      interactions = await run_query(ctx.session_factory, fetch_session_interactions,
                                     request.session_id, s.SEEN_INTERACTION_LIMIT)
      return build_seen_set(interactions)
  except StoreError as exc:
    logger.warning("seen-set unavailable (user=%s session=%s): %s",
                   request.user_id, request.session_id, exc.detail)
  return frozenset()


async def hydrate(candidates: List[Candidate], ctx: RecommendationContext) -> List[RecommendationItem]:
  """Attach catalog rows, dropping anything unapproved, missing or already seen."""
  candidates = [c for c in candidates if c.property_id not in ctx.seen]
  if not candidates:
    return []
  rows = await run_query(ctx.session_factory, fetch_properties,
                         [c.property_id for c in candidates], ctx.settings.APPROVED_STATUSES)
  by_id = {str(r["id"]): r for r in _records(rows)}

  items = []
  for c in candidates:
    prop = by_id.get(c.property_id)
    if prop is None:
      continue
    images = prop.get("images") or []
    items.append(RecommendationItem(
      property_id=c.property_id,
      title=prop["title"],
      city=prop.get("city"),
      district=prop.get("district"),
      price=prop.get("price"),
      property_type=prop.get("property_type"),
      bedrooms=prop.get("bedrooms"),
      bathrooms=prop.get("bathrooms"),
      image=images[0] if images else None,
      listing_type=prop.get("listing_type"),
      score=c.score,
      reason=c.reason,
      icon=c.icon,
    ))
  return items


async def collaborative_strategy(request: RecommendationRequest, ctx: RecommendationContext) -> List[RecommendationItem]:
  s = ctx.settings
  if not ctx.seen:
    return []
  interactions, favorites = await asyncio.gather(
    run_query(ctx.session_factory, fetch_neighbor_interactions, request.user_id, s.NEIGHBOR_INTERACTION_LIMIT),
    run_query(ctx.session_factory, fetch_neighbor_favorites, request.user_id, s.NEIGHBOR_FAVORITE_LIMIT),
  )
  candidates = collaborative_candidates(
    ctx.seen, interactions, favorites, limit=ctx.limit,
    min_overlap=s.MIN_OVERLAP, max_neighbors=s.MAX_NEIGHBORS, favorite_weight=s.FAVORITE_WEIGHT,
  )
  return await hydrate(candidates, ctx)


async def filter_sequence_strategy(request: RecommendationRequest, ctx: RecommendationContext) -> List[RecommendationItem]:
  s = ctx.settings
  follow_ups = await run_query(ctx.session_factory, fetch_follow_up_filters,
                               request.current_filter_id, s.FOLLOW_UP_FILTER_LIMIT)
  if follow_ups.empty:
    return []

  usages = await run_query(ctx.session_factory, fetch_filter_usages, [str(f) for f in follow_ups["filter_id"]])
  usage_by_id = {str(u["id"]): u for u in _records(usages)}

  ranked = [(usage_by_id[str(row.filter_id)], int(row.occurrences))
            for row in follow_ups.itertuples(index=False) if str(row.filter_id) in usage_by_id]
  if not ranked:
    return []

  results = await asyncio.gather(*[
    run_query(ctx.session_factory, search_properties, s.APPROVED_STATUSES, s.PROPERTIES_PER_FILTER,
              exclude=ctx.seen, **filter_criteria(usage))
    for usage, _ in ranked
  ])
  batches = [(usage, occurrences, list(found["property_id"]))
             for (usage, occurrences), found in zip(ranked, results)]
  return await hydrate(merge_filter_results(batches, limit=ctx.limit), ctx)


async def trending_strategy(request: RecommendationRequest, ctx: RecommendationContext) -> List[RecommendationItem]:
  s = ctx.settings
  since = datetime.now(timezone.utc) - timedelta(days=s.TRENDING_WINDOW_DAYS)
  trending = await run_query(ctx.session_factory, fetch_trending, since, s.APPROVED_STATUSES,
                             ctx.limit, exclude=ctx.seen)
  candidates = trending_candidates(trending, limit=ctx.limit)
  if not candidates:
    # cold platform: nothing favorited lately
    newest = await run_query(ctx.session_factory, fetch_newest, s.APPROVED_STATUSES,
                             ctx.limit, exclude=ctx.seen)
    candidates = newest_candidates(newest, limit=ctx.limit)
  return await hydrate(candidates, ctx)


# (strategy tag, entry condition, strategy) in priority order
STRATEGIES: List[Tuple[str, Callable[[RecommendationRequest], bool], Strategy]] = [
  (INTERACTION, lambda r: bool(r.user_id), collaborative_strategy),
  (FILTER_SEQUENCE, lambda r: bool(r.current_filter_id), filter_sequence_strategy),
  (TRENDING, lambda r: True, trending_strategy),
]


async def recommend(request: RecommendationRequest, session_factory: sessionmaker,
                    settings: Settings = default_settings,
                    strategies=STRATEGIES) -> RecommendationOut:
  t0 = time.time()
  limit = min(request.limit or settings.DEFAULT_LIMIT, settings.MAX_LIMIT)
  ctx = RecommendationContext(session_factory=session_factory, settings=settings, limit=limit)
  ctx.seen = await collect_seen_set(request, ctx)

  enabled = [(name, strategy) for name, applies, strategy in strategies if applies(request)]
  items: List[RecommendationItem] = []
  name = TRENDING
  for position, (name, strategy) in enumerate(enabled):
    if position == len(enabled) - 1:
      items = await strategy(request, ctx)
      break
    try:
      items = await strategy(request, ctx)
    except Exception:
      # any failure short of the terminal strategy counts as "nothing found"
      logger.exception("strategy %s failed, falling through", name)
      continue
    if items:
      break

  logger.info("served %d recommendations via %s in %dms (user=%s filter=%s)",
              len(items), name, int((time.time() - t0) * 1000),
              request.user_id, request.current_filter_id)
  return RecommendationOut(recommendations=items, strategy=name)
