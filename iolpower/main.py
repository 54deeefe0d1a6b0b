from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import logging, uuid

from .config import settings
from .logging_conf import configure_logging
from .routes.calculate import router as calculate_router

configure_logging()
log = logging.getLogger(__name__)

app = FastAPI(title="IOL Power Calculation Engine")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.allow_origin] if settings.allow_origin != "*" else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

app.add_middleware(RequestIdMiddleware)

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # report the first offending field, without the "body" prefix
    first = exc.errors()[0] if exc.errors() else {}
    loc = [str(part) for part in first.get("loc", ()) if part != "body"]
    log.info("Rejected request on %s: %s", request.url.path, first.get("msg"))
    return JSONResponse(status_code=400, content={"detail": {
        "code": "VALIDATION_ERROR",
        "field": ".".join(loc),
        "message": first.get("msg", "invalid request"),
    }})

app.include_router(calculate_router, prefix="/calculate", tags=["calculate"])

@app.get("/")
def root():
    return {"ok": True, "service": "iolpower", "default_iol_model": settings.default_iol_model}

@app.get("/health")
def health_check():
    """Health check endpoint for deployment probes."""
    return {"status": "healthy", "service": "iolpower", "version": "1.0.0"}
