import asyncio

import pytest

from related_properties.engine import (
  STRATEGIES, collect_seen_set, recommend, trending_strategy, RecommendationContext,
)
from related_properties.errors import StoreError
from related_properties.schemas import RecommendationRequest

from .conftest import ago, make_property, view, favorite, filter_usage, sequence


def run(request, session_factory, settings, **kwargs):
  return asyncio.run(recommend(request, session_factory, settings, **kwargs))


def ids(out):
  return [item.property_id for item in out.recommendations]


@pytest.fixture
def similar_taste(seed):
  """U touched P1, P2; V and W touched P1, P2, P3."""
  seed(
    *[make_property(p, created=ago(days=10 + i)) for i, p in enumerate(["P1", "P2", "P3", "P4"])],
    view("U", "P1"), view("U", "P2", kind="click"),
    view("V", "P1"), view("V", "P2"), view("V", "P3"),
    view("W", "P1", kind="inquiry"), view("W", "P2"), view("W", "P3"),
  )


def test_similar_users_drive_interaction_strategy(session_factory, test_settings, similar_taste):
  out = run(RecommendationRequest(user_id="U"), session_factory, test_settings)

  assert out.strategy == "interaction"
  assert ids(out) == ["P3"]
  item = out.recommendations[0]
  assert "similar taste" in item.reason
  assert item.score >= 2
  assert item.icon == "users"
  assert item.image == "https://img.example/P3.jpg"


def test_repeated_requests_are_identical(session_factory, test_settings, similar_taste):
  first = run(RecommendationRequest(user_id="U"), session_factory, test_settings)
  second = run(RecommendationRequest(user_id="U"), session_factory, test_settings)
  assert first == second


def test_unapproved_candidates_are_not_served(session_factory, test_settings, seed):
  seed(
    make_property("P1"), make_property("P2"), make_property("P3", status="pending"),
    make_property("P4"),
    view("U", "P1"), view("U", "P2"),
    view("V", "P1"), view("V", "P2"), view("V", "P3"), view("V", "P4"),
  )
  out = run(RecommendationRequest(user_id="U"), session_factory, test_settings)
  assert out.strategy == "interaction"
  assert ids(out) == ["P4"]


def test_searches_do_not_make_neighbors(session_factory, test_settings, seed):
  seed(
    make_property("P1"), make_property("P2"), make_property("P3"),
    view("U", "P1"), view("U", "P2"),
    view("V", "P1", kind="search"), view("V", "P2", kind="search"), view("V", "P3"),
  )
  out = run(RecommendationRequest(user_id="U"), session_factory, test_settings)
  assert out.strategy == "trending"


@pytest.fixture
def jakarta_follow_up(seed):
  """Ten people went from filter F to filter G (Jakarta, 2+ bedrooms)."""
  seed(
    filter_usage("F", location="Bandung"),
    filter_usage("G", location="Jakarta", bedrooms=2),
    *[sequence("F", "G") for _ in range(10)],
    make_property("J2", city="Jakarta", bedrooms=2, created=ago(days=3)),
    make_property("J3", city="Jakarta Selatan", bedrooms=3, created=ago(days=4)),
    make_property("J1", city="Jakarta", bedrooms=1, created=ago(days=1)),
    make_property("B2", city="Bandung", bedrooms=2, created=ago(days=1)),
    make_property("JP", city="Jakarta", bedrooms=4, status="pending", created=ago(days=1)),
  )


def test_popular_follow_up_filter(session_factory, test_settings, jakarta_follow_up):
  out = run(RecommendationRequest(current_filter_id="F"), session_factory, test_settings)

  assert out.strategy == "filter_sequence"
  assert ids(out) == ["J2", "J3"]
  for item in out.recommendations:
    assert "jakarta" in item.city.lower()
    assert item.bedrooms >= 2
    assert item.reason == "based on popular search: Jakarta, 2 bedrooms"
    assert item.score == 10


def test_follow_up_properties_capped_per_filter(session_factory, test_settings, seed):
  seed(
    filter_usage("G", location="Jakarta"),
    sequence("F", "G"),
    *[make_property(f"J{i}", created=ago(days=i + 1)) for i in range(6)],
  )
  out = run(RecommendationRequest(current_filter_id="F"), session_factory, test_settings)
  assert ids(out) == ["J0", "J1", "J2"]


def test_follow_up_filters_merge_without_duplicates(session_factory, test_settings, seed):
  seed(
    filter_usage("G", location="Jakarta", listing_type="rent"),
    filter_usage("H", location="Jakarta"),
    *[sequence("F", "G") for _ in range(3)],
    sequence("F", "H"),
    make_property("R1", listing_type="rent", created=ago(days=1)),
    make_property("S1", listing_type="sale", created=ago(days=2)),
  )
  out = run(RecommendationRequest(current_filter_id="F"), session_factory, test_settings)

  assert ids(out) == ["R1", "S1"]
  assert out.recommendations[0].reason == "based on popular search: Jakarta, for rent"
  assert out.recommendations[1].reason == "based on popular search: Jakarta"


def test_user_without_neighbors_falls_to_filter_sequence(session_factory, test_settings,
                                                        jakarta_follow_up, seed):
  seed(view("U", "J2"))
  out = run(RecommendationRequest(user_id="U", current_filter_id="F"), session_factory, test_settings)

  assert out.strategy == "filter_sequence"
  assert ids(out) == ["J3"]


def test_cold_platform_serves_newest_listings(session_factory, test_settings, seed):
  seed(
    *[make_property(f"P{i}", created=ago(days=i + 1)) for i in range(5)],
    make_property("DRAFT", status="draft", created=ago(hours=1)),
    favorite("X", "P0", when=ago(days=45)),
  )
  out = run(RecommendationRequest(), session_factory, test_settings)

  assert out.strategy == "trending"
  assert ids(out) == ["P0", "P1", "P2", "P3", "P4"]
  assert {item.reason for item in out.recommendations} == {"newly listed property"}
  assert {item.icon for item in out.recommendations} == {"sparkles"}


def test_trending_ranks_recent_favorites(session_factory, test_settings, seed):
  seed(
    make_property("HOT"), make_property("WARM"), make_property("OLD"), make_property("HIDDEN", status="rejected"),
    *[favorite(f"u{i}", "HOT") for i in range(3)],
    favorite("u1", "WARM"),
    *[favorite(f"u{i}", "OLD", when=ago(days=40)) for i in range(5)],
    *[favorite(f"u{i}", "HIDDEN") for i in range(9)],
  )
  out = run(RecommendationRequest(), session_factory, test_settings)

  assert out.strategy == "trending"
  assert ids(out) == ["HOT", "WARM"]
  assert out.recommendations[0].reason == "trending — favorited by 3 users recently"
  assert out.recommendations[0].icon == "flame"


def test_trending_skips_what_the_user_already_favorited(session_factory, test_settings, seed):
  seed(
    make_property("HOT"), make_property("WARM"),
    *[favorite(f"u{i}", "HOT") for i in range(3)],
    favorite("u1", "WARM"),
    favorite("U", "HOT"),
  )
  out = run(RecommendationRequest(user_id="U"), session_factory, test_settings)
  assert out.strategy == "trending"
  assert ids(out) == ["WARM"]


def test_anonymous_session_history_is_excluded(session_factory, test_settings, seed):
  seed(
    make_property("A", created=ago(days=1)), make_property("B", created=ago(days=2)),
    view(None, "A", session_id="s-1"),
  )
  out = run(RecommendationRequest(session_id="s-1"), session_factory, test_settings)
  assert out.strategy == "trending"
  assert ids(out) == ["B"]


def test_limit_bounds_output(session_factory, test_settings, seed):
  seed(*[make_property(f"P{i}", created=ago(days=i + 1)) for i in range(12)])
  assert len(run(RecommendationRequest(), session_factory, test_settings).recommendations) == 8
  assert len(run(RecommendationRequest(limit=3), session_factory, test_settings).recommendations) == 3


def test_no_catalog_means_empty_trending(session_factory, test_settings):
  out = run(RecommendationRequest(user_id="U", current_filter_id="F"), session_factory, test_settings)
  assert out.strategy == "trending"
  assert out.recommendations == []


def test_seen_set_failure_degrades_to_empty(broken_session_factory, test_settings):
  ctx = RecommendationContext(session_factory=broken_session_factory, settings=test_settings, limit=8)
  seen = asyncio.run(collect_seen_set(RecommendationRequest(user_id="U"), ctx))
  assert seen == frozenset()


def test_failing_strategy_falls_through(session_factory, test_settings, seed):
  seed(make_property("P1"))

  async def broken(request, ctx):
    raise StoreError("interaction log unreachable")

  strategies = [("interaction", lambda r: True, broken)] + STRATEGIES[1:]
  out = run(RecommendationRequest(user_id="U"), session_factory, test_settings, strategies=strategies)

  assert out.strategy == "trending"
  assert ids(out) == ["P1"]


def test_unexpected_strategy_error_falls_through(session_factory, test_settings, seed):
  seed(make_property("P1"))

  async def broken(request, ctx):
    raise ValueError("unexpected frame shape")

  strategies = [("interaction", lambda r: True, broken)] + STRATEGIES[1:]
  out = run(RecommendationRequest(user_id="U"), session_factory, test_settings, strategies=strategies)

  assert out.strategy == "trending"
  assert ids(out) == ["P1"]


def test_terminal_failure_propagates(broken_session_factory, test_settings):
  with pytest.raises(StoreError):
    run(RecommendationRequest(user_id="U", current_filter_id="F"), broken_session_factory, test_settings)


def test_trending_strategy_excludes_seen(session_factory, test_settings, seed):
  seed(make_property("A", created=ago(days=1)), make_property("B", created=ago(days=2)))
  ctx = RecommendationContext(session_factory=session_factory, settings=test_settings,
                              limit=8, seen=frozenset({"A"}))
  items = asyncio.run(trending_strategy(RecommendationRequest(), ctx))
  assert [i.property_id for i in items] == ["B"]
