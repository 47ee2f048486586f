from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

ALLOW_HEADERS = ("authorization, x-client-info, apikey, content-type, "
                 "x-supabase-client-platform, x-supabase-client-platform-version, "
                 "x-supabase-client-runtime, x-supabase-client-runtime-version")

class CORSHeadersMiddleware(BaseHTTPMiddleware):
  """Permissive CORS; preflight requests get an empty 200."""

  def __init__(self, app, allow_origin: str = "*"):
    super().__init__(app)
    self.headers = {
      "Access-Control-Allow-Origin": allow_origin,
      "Access-Control-Allow-Headers": ALLOW_HEADERS,
      "Access-Control-Allow-Methods": "POST, GET, OPTIONS",
    }

  async def dispatch(self, request: Request, call_next):
    if request.method == "OPTIONS":
      return Response(status_code=200, headers=self.headers)

    response = await call_next(request)
    for name, value in self.headers.items():
      response.headers[name] = value
    return response
