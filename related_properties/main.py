import asyncio
import logging
from typing import Optional

from fastapi import FastAPI, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from .config import settings
from .db import get_session_factory
from .engine import recommend
from .errors import RecommendationError, RequestTimeout
from .middleware import CORSHeadersMiddleware
from .schemas import ErrorOut, RecommendationOut, RecommendationRequest

logging.basicConfig(
  level=logging.DEBUG if settings.DEBUG else settings.LOG_LEVEL,
  format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)
app.add_middleware(CORSHeadersMiddleware, allow_origin=settings.CORS_ALLOW_ORIGIN)

@app.exception_handler(RecommendationError)
async def recommendation_error_handler(request: Request, exc: RecommendationError):
  logger.error("request failed: %s", exc.detail)
  return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
  return JSONResponse(status_code=400, content={"error": "Invalid request body", "details": jsonable_encoder(exc.errors())})

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
  logger.exception("unhandled error on %s", request.url.path)
  return JSONResponse(status_code=500, content={"error": str(exc) or exc.__class__.__name__})

@app.get("/health")
def health():
  return {"status": "ok"}

@app.post("/recommendations", response_model=RecommendationOut, responses={500: {"model": ErrorOut}})
@app.post("/related-properties", response_model=RecommendationOut, include_in_schema=False)
async def related_properties(body: Optional[RecommendationRequest] = None,
                             session_factory: sessionmaker = Depends(get_session_factory)):
  request = body or RecommendationRequest()
  try:
    return await asyncio.wait_for(recommend(request, session_factory, settings),
                                  timeout=settings.REQUEST_TIMEOUT_SECONDS)
  except asyncio.TimeoutError:
    raise RequestTimeout()
