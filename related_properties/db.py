from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from .config import settings

def engine_options(database_url: str, timeout_seconds: float) -> dict:
  """
  Server-side statement timeout matching the request budget, so a fetch left
  behind by a cancelled request does not keep running on the database.
  """
  if make_url(database_url).get_backend_name() != "postgresql":
    return {}
  timeout_ms = max(1, int(timeout_seconds * 1000))
  return {"connect_args": {"options": f"-c statement_timeout={timeout_ms}"}}

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True,
                       **engine_options(settings.DATABASE_URL, settings.REQUEST_TIMEOUT_SECONDS))
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

Base = declarative_base()

def get_session_factory():
  # every fetch opens its own session so independent reads can run side by side
  return SessionLocal
