from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Optional, Literal

class CamelModel(BaseModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class RecommendationRequest(CamelModel):
  current_filter_id: Optional[str] = None
  session_id: Optional[str] = None
  user_id: Optional[str] = None
  limit: Optional[int] = Field(default=None, ge=1)

class RecommendationItem(CamelModel):
  property_id: str
  title: str
  city: Optional[str] = None
  district: Optional[str] = None
  price: Optional[float] = None
  property_type: Optional[str] = None
  bedrooms: Optional[int] = None
  bathrooms: Optional[int] = None
  image: Optional[str] = None
  listing_type: Optional[str] = None
  score: float
  reason: str
  icon: str

class RecommendationOut(CamelModel):
  recommendations: List[RecommendationItem]
  strategy: Literal["interaction", "filter_sequence", "trending"]

class ErrorOut(BaseModel):
  error: str
