"""
Candidate generation for the three recommendation strategies. Everything
here is pure: DataFrames in, ranked Candidates out. Fetching lives in
store.py, the cascade in engine.py.
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.sparse import csr_matrix

INTERACTION = "interaction"
FILTER_SEQUENCE = "filter_sequence"
TRENDING = "trending"

INTERACTION_REASON = "users with similar taste also viewed this property"
NEWEST_REASON = "newly listed property"

ICONS = {
  INTERACTION: "users",
  FILTER_SEQUENCE: "search",
  TRENDING: "flame",
  "newest": "sparkles",
}

LISTING_LABELS = {
  "sale": "for sale",
  "rent": "for rent",
}


@dataclass
class Candidate:
  property_id: str
  score: float
  reason: str
  source_strategy: str
  icon: str


def build_seen_set(*frames: pd.DataFrame) -> FrozenSet[str]:
  """Union of the property ids found in each frame's `property_id` column."""
  seen = set()
  for df in frames:
    if df.empty:
      continue
    seen.update(str(p) for p in df["property_id"].dropna())
  return frozenset(seen)


# ---------------------------------------------------------------------------
# collaborative
# ---------------------------------------------------------------------------

def compute_overlaps(seen: FrozenSet[str], touches: pd.DataFrame) -> pd.Series:
  """
  For every user in `touches` (columns user_id, property_id) count the
  distinct properties they touched that are also in `seen`.
  Returns a Series user_id -> overlap.
  """
  if touches.empty or not seen:
    return pd.Series(dtype="int64", name="overlap")

  pairs = touches[["user_id", "property_id"]].dropna().astype(str).drop_duplicates()
  users = pairs["user_id"].unique()
  items = pairs["property_id"].unique()

  user_index = {u: i for i, u in enumerate(users)}
  item_index = {p: j for j, p in enumerate(items)}

  rows = pairs["user_id"].map(user_index).values
  cols = pairs["property_id"].map(item_index).values
  # user x item incidence matrix
  M = csr_matrix((np.ones(len(pairs)), (rows, cols)), shape=(len(users), len(items)))

  seen_vec = np.array([1.0 if p in seen else 0.0 for p in items])
  overlap = M.dot(seen_vec)
  return pd.Series(overlap.astype("int64"), index=pd.Index(users, name="user_id"), name="overlap")


def select_neighbors(overlaps: pd.Series, min_overlap: int = 2, max_neighbors: int = 20) -> pd.Series:
  """Users with at least `min_overlap` shared properties, strongest first."""
  if overlaps.empty:
    return overlaps
  kept = overlaps[overlaps >= min_overlap]
  ranked = (kept.rename("overlap").rename_axis("user_id").reset_index()
                .sort_values(["overlap", "user_id"], ascending=[False, True])
                .head(max_neighbors))
  return ranked.set_index("user_id")["overlap"]


def score_candidates(seen: FrozenSet[str], neighbors: pd.Series,
                     interactions: pd.DataFrame, favorites: pd.DataFrame,
                     favorite_weight: float = 2.0) -> pd.DataFrame:
  """
  Every property a neighbor touched and the requester has not seen earns the
  neighbor's overlap; favorites earn `favorite_weight` times that.
  Returns columns [property_id, score, last_touch], best first. Ties go to the
  property a neighbor touched most recently.
  """
  empty = pd.DataFrame(columns=["property_id", "score", "last_touch"])
  if neighbors.empty:
    return empty

  frames = []
  for df, factor in ((interactions, 1.0), (favorites, favorite_weight)):
    if df.empty:
      continue
    touched = df.assign(user_id=df["user_id"].astype(str), property_id=df["property_id"].astype(str))
    touched = touched[touched["user_id"].isin(neighbors.index) & ~touched["property_id"].isin(seen)]
    if touched.empty:
      continue
    # a neighbor counts once per property per signal
    touched = touched.groupby(["user_id", "property_id"], as_index=False)["created_at"].max()
    touched["score"] = touched["user_id"].map(neighbors).astype(float) * factor
    frames.append(touched)

  if not frames:
    return empty

  scored = (pd.concat(frames, ignore_index=True)
              .groupby("property_id", as_index=False)
              .agg(score=("score", "sum"), last_touch=("created_at", "max")))
  return scored.sort_values(["score", "last_touch", "property_id"],
                            ascending=[False, False, True], ignore_index=True)


def collaborative_candidates(seen: FrozenSet[str], interactions: pd.DataFrame,
                             favorites: pd.DataFrame, limit: int = 8,
                             min_overlap: int = 2, max_neighbors: int = 20,
                             favorite_weight: float = 2.0) -> List[Candidate]:
  if not seen:
    return []

  frames = [df[["user_id", "property_id"]] for df in (interactions, favorites) if not df.empty]
  if not frames:
    return []
  overlaps = compute_overlaps(seen, pd.concat(frames, ignore_index=True))
  neighbors = select_neighbors(overlaps, min_overlap, max_neighbors)
  scored = score_candidates(seen, neighbors, interactions, favorites, favorite_weight)

  return [
    Candidate(property_id=row.property_id, score=float(row.score), reason=INTERACTION_REASON,
              source_strategy=INTERACTION, icon=ICONS[INTERACTION])
    for row in scored.head(limit).itertuples(index=False)
  ]


# ---------------------------------------------------------------------------
# filter sequence
# ---------------------------------------------------------------------------

def _value(v):
  if v is None:
    return None
  try:
    if pd.isna(v):
      return None
  except (TypeError, ValueError):
    pass
  return v


def describe_filter(usage: Dict) -> str:
  """Human readable summary of a saved filter, e.g. "Jakarta, 2 bedrooms, for sale"."""
  parts = []
  location = _value(usage.get("location"))
  if location:
    parts.append(str(location))
  bedrooms = _value(usage.get("bedrooms"))
  if bedrooms:
    count = int(bedrooms)
    parts.append(f"{count} bedroom" if count == 1 else f"{count} bedrooms")
  listing_type = _value(usage.get("listing_type"))
  if listing_type:
    parts.append(LISTING_LABELS.get(str(listing_type).lower(), f"for {listing_type}"))
  return ", ".join(parts) if parts else "similar criteria"


def filter_criteria(usage: Dict) -> Dict:
  """Keyword arguments for store.search_properties built from a saved filter."""
  return {
    "location": _value(usage.get("location")),
    "listing_type": _value(usage.get("listing_type")),
    "bedrooms": _value(usage.get("bedrooms")),
    "price_min": _value(usage.get("price_min")),
    "price_max": _value(usage.get("price_max")),
  }


def merge_filter_results(batches: Iterable[Tuple[Dict, float, Sequence[str]]],
                         limit: int = 8) -> List[Candidate]:
  """
  `batches` holds (filter usage, occurrences, property ids) in follow-up rank
  order. First occurrence of a property wins; at most `limit` overall.
  """
  seen_ids = set()
  out: List[Candidate] = []
  for usage, occurrences, property_ids in batches:
    reason = f"based on popular search: {describe_filter(usage)}"
    for pid in property_ids:
      pid = str(pid)
      if pid in seen_ids:
        continue
      seen_ids.add(pid)
      out.append(Candidate(property_id=pid, score=float(occurrences), reason=reason,
                           source_strategy=FILTER_SEQUENCE, icon=ICONS[FILTER_SEQUENCE]))
      if len(out) >= limit:
        return out
  return out


# ---------------------------------------------------------------------------
# trending
# ---------------------------------------------------------------------------

def trending_candidates(trending: pd.DataFrame, limit: int = 8) -> List[Candidate]:
  out = []
  for row in trending.head(limit).itertuples(index=False):
    count = int(row.favorites)
    out.append(Candidate(property_id=str(row.property_id), score=float(count),
                         reason=f"trending — favorited by {count} users recently",
                         source_strategy=TRENDING, icon=ICONS[TRENDING]))
  return out


def newest_candidates(newest: pd.DataFrame, limit: int = 8) -> List[Candidate]:
  return [
    Candidate(property_id=str(pid), score=0.0, reason=NEWEST_REASON,
              source_strategy=TRENDING, icon=ICONS["newest"])
    for pid in newest["property_id"].head(limit)
  ]
