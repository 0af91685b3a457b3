"""FastAPI application exposing signup, upload and detection history endpoints."""

from contextlib import asynccontextmanager
from typing import Optional

import logging
import uvicorn
from fastapi import APIRouter, Depends, FastAPI, File, Form, Path, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import Counter
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import authenticate, hash_password
from .config import Settings, settings as default_settings
from .errors import DermaiError, ValidationError
from .schemas import (
    MAX_ID,
    MIN_ID,
    DetectionResultRequest,
    DetectionResultResponse,
    HealthResponse,
    HistoryResponse,
    SigninRequest,
    SigninResponse,
    SignupRequest,
    SignupResponse,
    UploadResponse,
    UserOut,
)
from .storage import BlobStore
from .store import Store


logger = logging.getLogger(__name__)

API_PREFIX = "/api"

# Prometheus counter to track API requests by method, endpoint and status code
REQUEST_COUNTER = Counter(
    "api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)

# error returned when a request body does not match its declared shape
VALIDATION_MESSAGES = {
    f"{API_PREFIX}/signup": "All fields are required",
    f"{API_PREFIX}/signin": "Email and password are required",
    f"{API_PREFIX}/detection-result": "Disease, accuracy, and medicine are required",
}

# optional reference fields that can fail validation on their own
FIELD_MESSAGES = {
    "imageId": "Invalid imageId",
    "userId": "Invalid userId",
    "user_id": "Invalid userId",
}

router = APIRouter(prefix=API_PREFIX)


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_blobs(request: Request) -> BlobStore:
    return request.app.state.blobs


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _parse_optional_id(value: Optional[str]) -> Optional[int]:
    """Form fields arrive as text; empty means anonymous."""
    if value is None or value.strip() in ("", "null", "undefined"):
        return None
    try:
        owner = int(value)
    except ValueError:
        raise ValidationError(FIELD_MESSAGES["userId"])
    if not MIN_ID <= owner <= MAX_ID:
        raise ValidationError(FIELD_MESSAGES["userId"])
    return owner


@router.post("/signup", response_model=SignupResponse)
def signup(
    payload: SignupRequest,
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Register a user with a bcrypt-hashed password."""

    password_hash = hash_password(payload.password, rounds=settings.bcrypt_rounds)
    user_id = store.create_user(payload.username, payload.email, password_hash)
    return SignupResponse(user_id=user_id)


@router.post("/signin", response_model=SigninResponse)
def signin(payload: SigninRequest, store: Store = Depends(get_store)):
    """Return the public profile for valid credentials."""

    user = authenticate(store, payload.email, payload.password)
    logger.info("user %s signed in", user.id)
    return SigninResponse(
        user=UserOut(id=user.id, username=user.username, email=user.email)
    )


@router.post("/upload", response_model=UploadResponse)
def upload_image(
    image: Optional[UploadFile] = File(None),
    user_id: Optional[str] = Form(None, alias="userId"),
    store: Store = Depends(get_store),
    blobs: BlobStore = Depends(get_blobs),
):
    """Store an uploaded image and record its metadata."""

    if image is None or not image.filename:
        raise ValidationError("No image file uploaded")
    owner = _parse_optional_id(user_id)

    blob = blobs.save(image.file, image.filename, image.content_type)
    image_id = store.create_image(owner, blob.filename, blob.original_filename, blob.path)
    return UploadResponse(
        image_id=image_id,
        filename=blob.filename,
        original_filename=blob.original_filename,
        file_path=blob.path,
    )


@router.post("/detection-result", response_model=DetectionResultResponse)
def save_detection_result(
    payload: DetectionResultRequest, store: Store = Depends(get_store)
):
    """Persist a detection result supplied by the client."""

    result_id = store.create_detection_result(
        image_id=payload.image_id,
        user_id=payload.user_id,
        disease=payload.disease,
        accuracy=payload.accuracy,
        medicine=payload.medicine,
    )
    return DetectionResultResponse(
        result_id=result_id,
        disease=payload.disease,
        accuracy=payload.accuracy,
        medicine=payload.medicine,
    )


@router.get("/history/{user_id}", response_model=HistoryResponse)
def get_history(
    user_id: int = Path(..., ge=MIN_ID, le=MAX_ID),
    store: Store = Depends(get_store),
):
    """Return the user's detection results, newest first."""

    return HistoryResponse(history=store.list_detection_results_for_user(user_id))


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse()


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _register_handlers(app: FastAPI) -> None:
    @app.exception_handler(DermaiError)
    async def handle_dermai_error(request: Request, exc: DermaiError):
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        logger.info("invalid request %s %s: %s", request.method, request.url.path, exc.errors())
        fields = [error["loc"][-1] for error in exc.errors() if error.get("loc")]
        if fields and all(field in FIELD_MESSAGES for field in fields):
            message = FIELD_MESSAGES[fields[0]]
        else:
            message = VALIDATION_MESSAGES.get(request.url.path, "Invalid request")
        return _error_response(400, message)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        return _error_response(500, "Server error")

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log incoming requests and their outcomes while updating metrics."""
        logger.info("request %s %s", request.method, request.url.path)
        try:
            response = await call_next(request)
            REQUEST_COUNTER.labels(
                method=request.method,
                endpoint=request.url.path,
                status=str(response.status_code),
            ).inc()
            logger.info(
                "response %s %s status %s",
                request.method,
                request.url.path,
                response.status_code,
            )
            return response
        except Exception:
            REQUEST_COUNTER.labels(
                method=request.method,
                endpoint=request.url.path,
                status="500",
            ).inc()
            logger.exception(
                "error handling %s %s", request.method, request.url.path
            )
            raise


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[Store] = None,
    blobs: Optional[BlobStore] = None,
) -> FastAPI:
    """Build the application around an explicit store and blob store.

    Tables and the upload directory are created at startup, both
    idempotently.
    The store is closed when the application shuts down.
    """
    if settings is None:
        settings = default_settings
    if store is None:
        store = Store(settings.database_url)
    if blobs is None:
        blobs = BlobStore(settings.upload_dir, max_bytes=settings.max_upload_bytes)
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.init_schema()
        blobs.ensure_directory()
        logger.info("%s started", settings.api_title)
        yield
        store.close()

    app = FastAPI(title=settings.api_title, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.blobs = blobs

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_handlers(app)
    app.include_router(router)
    return app


def run() -> None:
    """Console entry point serving the API with uvicorn."""
    logging.basicConfig(level=default_settings.log_level)
    uvicorn.run(
        "dermai.api:create_app",
        factory=True,
        host=default_settings.host,
        port=default_settings.port,
        log_level=default_settings.log_level.lower(),
    )
