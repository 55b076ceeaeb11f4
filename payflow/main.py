import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payflow.core.config import settings
from payflow.core.errors import PaymentFlowError, SignatureMismatch, UpstreamError
from payflow.core.logging import setup_logging
from payflow.api.v1.api import api_router

setup_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(title=settings.APP_NAME)

_default_origins = ["http://127.0.0.1:3000", "http://localhost:3000"]
_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] if settings.CORS_ORIGINS else _default_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.exception_handler(PaymentFlowError)
async def payment_flow_error_handler(request: Request, exc: PaymentFlowError):
    log = logger.bind(endpoint=f"{request.method} {request.url.path}", error=type(exc).__name__, **exc.context)
    if isinstance(exc, SignatureMismatch):
        log.error("security_event", message=exc.message)
    elif isinstance(exc, UpstreamError):
        log.error("upstream_error", message=exc.message, gateway_status=exc.gateway_status)
    elif exc.status_code >= 500:
        log.error("application_error", message=exc.message)
    else:
        log.warning("request_rejected", message=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "statusCode": exc.status_code})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
    logger.warning("request_rejected", endpoint=f"{request.method} {request.url.path}", error="ValidationError", fields=fields)
    return JSONResponse(status_code=400, content={"error": "Invalid request", "statusCode": 400, "fields": fields})


@app.get("/health")
def health():
    return {"status": "ok"}
