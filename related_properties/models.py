from sqlalchemy import Column, String, Integer, Float, JSON, TIMESTAMP, func
from .db import Base

# Tables owned by the browsing/search/catalog services. Mapped here for reads only.

class UserInteraction(Base):
  __tablename__ = "user_interactions"
  id = Column(Integer, primary_key=True, autoincrement=True)
  user_id = Column(String(64), index=True)
  session_id = Column(String(64), index=True)
  interaction_type = Column(String(32), nullable=False)  # view | click | inquiry | search
  property_id = Column(String(64))
  created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False, index=True)

class Favorite(Base):
  __tablename__ = "favorites"
  id = Column(Integer, primary_key=True, autoincrement=True)
  user_id = Column(String(64), nullable=False, index=True)
  property_id = Column(String(64), nullable=False, index=True)
  created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False, index=True)

class FilterUsage(Base):
  __tablename__ = "filter_usage"
  id = Column(String(64), primary_key=True)
  location = Column(String(255))
  listing_type = Column(String(32))
  bedrooms = Column(Integer)
  price_min = Column(Float)
  price_max = Column(Float)

class FilterSequence(Base):
  __tablename__ = "filter_sequences"
  id = Column(Integer, primary_key=True, autoincrement=True)
  previous_filter_id = Column(String(64), nullable=False, index=True)
  current_filter_id = Column(String(64), nullable=False)
  created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)

class Property(Base):
  __tablename__ = "properties"
  id = Column(String(64), primary_key=True)
  title = Column(String(255), nullable=False)
  city = Column(String(128))
  district = Column(String(128))
  price = Column(Float)
  property_type = Column(String(64))
  bedrooms = Column(Integer)
  bathrooms = Column(Integer)
  images = Column(JSON)
  listing_type = Column(String(32))  # sale | rent
  status = Column(String(32), nullable=False, index=True)
  created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
