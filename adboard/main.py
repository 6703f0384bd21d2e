import logging
import os
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.responses import HTMLResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from adboard.assets import AssetStore, LocalAssetStore, build_asset_store, read_upload
from adboard.config import Settings, get_settings
from adboard.errors import AdBoardError, StorageError
from adboard.logging_utils import RequestLoggingMiddleware, log_submission_data, setup_logging
from adboard.metrics import get_metrics, get_metrics_content_type, record_submission_outcome
from adboard.rendering import ListingRenderer, build_template_environment
from adboard.schemas import HealthResponse
from adboard.storage import build_engine, build_session_factory, check_db_health, get_db, init_db
from adboard.submission import SubmissionPipeline
from adboard.utils import StripedLock

logger = logging.getLogger(__name__)

FORM_FIELDS = ("phone", "city", "address", "group")


# =============================================================================
# Dependencies
# =============================================================================

def get_renderer(request: Request, db: Session = Depends(get_db)) -> ListingRenderer:
    return ListingRenderer(db, request.app.state.templates)


def get_pipeline(request: Request, db: Session = Depends(get_db)) -> SubmissionPipeline:
    settings: Settings = request.app.state.settings
    return SubmissionPipeline(
        db=db,
        asset_store=request.app.state.asset_store,
        phone_locks=request.app.state.phone_locks,
        max_ads_per_phone=settings.MAX_ADS_PER_PHONE,
        max_image_bytes=settings.MAX_IMAGE_BYTES,
        reject_unknown_categories=settings.REJECT_UNKNOWN_CATEGORIES,
        phone_region=settings.PHONE_REGION,
    )


# =============================================================================
# Application Factory
# =============================================================================

def create_app(settings: Optional[Settings] = None, asset_store: Optional[AssetStore] = None) -> FastAPI:
    """
    Build the application and its collaborators.

    The database engine, asset store, templates and phone locks are owned
    by the app (app.state) and reach the routes through dependencies.
    The engine is disposed when the app shuts down.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    engine = build_engine(settings.DATABASE_URL)
    asset_store = asset_store or build_asset_store(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(engine)
        if isinstance(asset_store, LocalAssetStore):
            os.makedirs(asset_store.directory, exist_ok=True)
        yield
        engine.dispose()
        logger.info("Database engine disposed")

    app = FastAPI(
        title="AdBoard",
        description="Classified ads: submit an ad with an image, browse by category or city",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.asset_store = asset_store
    app.state.templates = build_template_environment()
    app.state.phone_locks = StripedLock()

    app.add_middleware(RequestLoggingMiddleware)

    if isinstance(asset_store, LocalAssetStore):
        app.mount(
            asset_store.url_prefix,
            StaticFiles(directory=asset_store.directory, check_dir=False),
            name="uploads",
        )

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:

    @app.exception_handler(AdBoardError)
    async def adboard_error_handler(request: Request, exc: AdBoardError) -> HTMLResponse:
        if isinstance(exc, StorageError):
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
        else:
            logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
        renderer = ListingRenderer(None, request.app.state.templates)
        return HTMLResponse(
            renderer.render_message(exc.title, exc.message),
            status_code=exc.status_code,
        )

    # =========================================================================
    # Health Check Routes
    # =========================================================================

    @app.get("/health/live", response_model=HealthResponse)
    async def health_live() -> HealthResponse:
        """Liveness probe - always returns 200 once the app is running."""
        return HealthResponse(status="ok")

    @app.get("/health/ready", response_model=HealthResponse)
    async def health_ready(request: Request, response: Response) -> HealthResponse:
        """
        Readiness probe - 200 only if the DB is reachable and the ads
        table exists, otherwise 503.
        """
        if not check_db_health(request.app.state.session_factory):
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return HealthResponse(
                status="not_ready",
                reason="Database not reachable or schema not applied"
            )
        return HealthResponse(status="ready")

    # =========================================================================
    # Listing Routes
    # =========================================================================

    @app.get("/", response_class=HTMLResponse)
    async def home(renderer: ListingRenderer = Depends(get_renderer)) -> HTMLResponse:
        """All ads grouped by category, newest first."""
        return HTMLResponse(renderer.render_all_grouped(ascending=False, show_category=False))

    @app.get("/ads", response_class=HTMLResponse)
    async def all_ads(renderer: ListingRenderer = Depends(get_renderer)) -> HTMLResponse:
        """All ads grouped by category, oldest first, with their group shown."""
        return HTMLResponse(renderer.render_all_grouped(ascending=True, show_category=True))

    @app.get("/search", response_class=HTMLResponse)
    async def search(
        city: Annotated[Optional[str], Query(description="City to match, case-insensitive")] = None,
        renderer: ListingRenderer = Depends(get_renderer),
    ) -> HTMLResponse:
        """Ads whose city equals `city`, ignoring case."""
        return HTMLResponse(renderer.render_by_city(city))

    # =========================================================================
    # Submission Route
    # =========================================================================

    @app.post("/submit", response_class=HTMLResponse)
    async def submit(
        request: Request,
        pipeline: SubmissionPipeline = Depends(get_pipeline),
    ) -> HTMLResponse:
        """
        Accept a multipart form with phone, city, address, group and an
        optional image file.
        """
        form = await request.form()
        fields = {}
        for name in FORM_FIELDS:
            value = form.get(name)
            if isinstance(value, str):
                fields[name] = value

        upload = None
        image = form.get("image")
        if isinstance(image, UploadFile):
            # One byte past the limit is enough to reject an oversized file
            data = await image.read(pipeline.max_image_bytes + 1)
            upload = read_upload(image.filename, image.content_type, data)
            await image.close()

        logger.info(f"Submission received: phone={fields.get('phone')}, image={'yes' if upload else 'no'}")

        try:
            confirmation = await run_in_threadpool(pipeline.submit, fields, upload)
        except AdBoardError as exc:
            record_submission_outcome(exc.result)
            log_submission_data(
                request=request,
                phone=fields.get("phone"),
                category=fields.get("group"),
                result=exc.result,
            )
            raise

        record_submission_outcome("created")
        log_submission_data(
            request=request,
            phone=confirmation.phone,
            category=confirmation.category,
            result="created",
        )
        renderer = ListingRenderer(None, request.app.state.templates)
        return HTMLResponse(renderer.render_message("Ad submitted successfully!"))

    # =========================================================================
    # Metrics Route
    # =========================================================================

    @app.get("/metrics")
    async def metrics() -> Response:
        """Expose Prometheus-style metrics."""
        return Response(
            content=get_metrics(),
            media_type=get_metrics_content_type()
        )


app = create_app()
