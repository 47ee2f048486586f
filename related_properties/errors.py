class RecommendationError(Exception):
  """Base error for request-level failures; rendered as {"error": detail}."""

  def __init__(self, detail: str, status_code: int = 500, error_code: str = None):
    self.detail = detail
    self.status_code = status_code
    self.error_code = error_code
    super().__init__(detail)

class StoreError(RecommendationError):
  """A read against one of the upstream stores failed."""

  def __init__(self, detail: str = "Data store unavailable", error_code: str = "STORE_ERROR"):
    super().__init__(detail, 500, error_code)

class RequestTimeout(RecommendationError):
  def __init__(self, detail: str = "Recommendation request timed out", error_code: str = "TIMEOUT"):
    super().__init__(detail, 504, error_code)
