from fastapi import FastAPI, Depends, HTTPException, status, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from datetime import datetime

from shared.utils import (
    get_db_client, settings, ErrorResponse, HealthResponse,
    AppException, UnauthorizedException,
)
from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware

from foodmarket.models import ROLE_HOMES, Role
from foodmarket.sessions import get_session, get_db
from foodmarket.routers import auth, client, commerce, delivery, admin

# Setup Logging
logger = setup_logging(settings.SERVICE_NAME, settings.LOG_LEVEL)

app = FastAPI(title="Food Marketplace")

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware, service_name=settings.SERVICE_NAME)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(client.router)
app.include_router(commerce.router)
app.include_router(delivery.router)
app.include_router(admin.router)

@app.on_event("startup")
async def startup_db_client():
    app.mongodb_client = get_db_client()
    app.mongodb = app.mongodb_client[settings.DATABASE_NAME]
    # Indexes
    await app.mongodb.users.create_index("email", unique=True)
    await app.mongodb.users.create_index("username", unique=True)
    await app.mongodb.sessions.create_index("expires_at", expireAfterSeconds=0)
    await app.mongodb.favorites.create_index([("client_id", 1), ("commerce_id", 1)], unique=True)
    await app.mongodb.orders.create_index("client_id")
    await app.mongodb.orders.create_index("commerce_id")
    await app.mongodb.orders.create_index([("status", 1), ("courier_id", 1)])
    await app.mongodb.products.create_index("commerce_id")
    await app.mongodb.categories.create_index("commerce_id")
    await app.mongodb.addresses.create_index("client_id")

@app.on_event("shutdown")
async def shutdown_db_client():
    app.mongodb_client.close()

# --- Error handling ---

def wants_json(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    content_type = request.headers.get("content-type", "")
    return (
        "application/json" in accept
        or "application/json" in content_type
        or "authorization" in request.headers
    )

@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    if exc.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN) and not wants_json(request):
        return RedirectResponse("/auth/login", status_code=status.HTTP_303_SEE_OTHER)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.detail, details=getattr(exc, "errors", None)).model_dump(),
        headers=exc.headers,
    )

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"] if part != "body")
        errors.append(f"{field}: {error['msg']}" if field else error["msg"])
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(error="Validation failed", details=errors).model_dump(),
    )

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled error",
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={"request_id": getattr(request.state, "request_id", None), "path": request.url.path},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error="Something went wrong, please try again").model_dump(),
    )

# --- Endpoints ---

@app.get("/")
async def index(request: Request, db=Depends(get_db)):
    try:
        ctx = await get_session(request, db)
    except UnauthorizedException:
        return RedirectResponse("/auth/login", status_code=status.HTTP_303_SEE_OTHER)
    return RedirectResponse(ROLE_HOMES[Role(ctx.role)], status_code=status.HTTP_303_SEE_OTHER)

@app.get("/health", response_model=HealthResponse)
async def health_check():
    try:
        await app.mongodb_client.admin.command('ping')
        db_status = "connected"
    except Exception:
        db_status = "disconnected"

    if db_status != "connected":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service=settings.SERVICE_NAME,
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status
    )
