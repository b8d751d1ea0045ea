import asyncio
import contextlib
import os
from contextlib import asynccontextmanager
from datetime import date
from functools import lru_cache

from fastapi import Depends, FastAPI, HTTPException, Query, Response
from simple_logger.logger import get_logger

from jenkins_allure_insight.aggregator import BatchCoordinator
from jenkins_allure_insight.config import Settings, get_settings
from jenkins_allure_insight.exceptions import AggregationError, ResolutionError
from jenkins_allure_insight.jenkins import JenkinsClient
from jenkins_allure_insight.metrics import analyze_reports, filter_reports
from jenkins_allure_insight.models import (
    AuthenticationCheck,
    AuthenticationConfig,
    AuthenticationRequest,
    AuthenticationStatus,
    BatchResult,
    BuildConfig,
    BuildConfigRequest,
    DashboardAnalysis,
    DashboardFilters,
    DashboardResponse,
    RecordStatus,
    ReportRecord,
)
from jenkins_allure_insight.storage import (
    AUTH_CONFIG_KEY,
    delete_value,
    get_auth_config,
    get_build_configs,
    init_db,
    save_auth_config,
    save_build_configs,
)
from jenkins_allure_insight.urls import resolve_build_url

logger = get_logger(name=__name__, level=os.environ.get("LOG_LEVEL", "INFO"))


@lru_cache
def get_coordinator() -> BatchCoordinator:
    """Get the process-wide batch coordinator."""
    settings = get_settings()
    return BatchCoordinator(
        timeout=settings.request_timeout,
        max_retries=settings.max_retries,
        ssl_verify=settings.jenkins_ssl_verify,
    )


async def resolve_authentication(
    settings: Settings,
) -> tuple[AuthenticationConfig | None, str | None]:
    """Return the active credentials and where they came from.

    Credentials stored through the API take precedence over environment
    variables.
    """
    stored = await get_auth_config()
    if stored is not None:
        return stored, "stored"
    configured = settings.authentication()
    if configured is not None:
        return configured, "environment"
    return None, None


def _require_authentication(auth: AuthenticationConfig | None) -> AuthenticationConfig:
    if auth is None:
        raise HTTPException(
            status_code=400,
            detail="Jenkins authentication is not configured. PUT /config/auth or set JENKINS_BASE_URL and JENKINS_SESSION_ID.",
        )
    return auth


async def _load_refresh_inputs() -> tuple[list[BuildConfig], AuthenticationConfig | None]:
    auth, _ = await resolve_authentication(get_settings())
    return await get_build_configs(), auth


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    settings = get_settings()
    poller: asyncio.Task | None = None
    if settings.auto_refresh:
        logger.info(f"Auto refresh enabled every {settings.refresh_interval}s")
        poller = asyncio.create_task(
            get_coordinator().poll(_load_refresh_inputs, settings.refresh_interval)
        )
    yield
    if poller is not None:
        poller.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await poller


app = FastAPI(
    title="Jenkins Allure Insight",
    description="Aggregates Allure reports of configured Jenkins builds into dashboard analytics",
    version="0.1.0",
    lifespan=lifespan,
)


def _build_config_from_request(body: BuildConfigRequest) -> BuildConfig:
    """Create a BuildConfig, rejecting URLs that cannot be resolved."""
    try:
        identity = resolve_build_url(body.build_url)
    except ResolutionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return BuildConfig(
        name=body.name,
        build_url=body.build_url,
        job_name=identity.job_name,
        build_number=identity.build_number,
        description=body.description,
        environment=body.environment,
        tags=body.tags,
    )


def _check_duplicate(
    configs: list[BuildConfig], config: BuildConfig, skip_index: int | None = None
) -> None:
    for index, existing in enumerate(configs):
        if index == skip_index:
            continue
        if (existing.job_name, existing.build_number) == (
            config.job_name,
            config.build_number,
        ):
            raise HTTPException(
                status_code=409,
                detail=f"Build '{config.job_name}' #{config.build_number} is already configured",
            )


def _check_index(configs: list[BuildConfig], index: int) -> None:
    if not 0 <= index < len(configs):
        raise HTTPException(
            status_code=404, detail=f"No build configuration at index {index}"
        )


def _dashboard_filters(
    job_name: str | None = Query(None, description="Job name substring"),
    status: RecordStatus | None = Query(None),
    environment: str | None = Query(None),
    tag: str | None = Query(None),
    start_date: date | None = Query(None, description="Inclusive, UTC"),
    end_date: date | None = Query(None, description="Inclusive, UTC"),
) -> DashboardFilters:
    return DashboardFilters(
        job_name=job_name,
        status=status,
        environment=environment,
        tag=tag,
        start_date=start_date,
        end_date=end_date,
    )


def _latest_batch(coordinator: BatchCoordinator) -> BatchResult:
    if coordinator.latest is None:
        raise HTTPException(
            status_code=404,
            detail="No reports fetched yet. POST /reports/refresh first.",
        )
    return coordinator.latest


@app.get("/config/auth", response_model=AuthenticationStatus)
async def get_authentication(
    settings: Settings = Depends(get_settings),
) -> AuthenticationStatus:
    """Show which Jenkins server is configured. Never returns the session id."""
    auth, source = await resolve_authentication(settings)
    if auth is None:
        return AuthenticationStatus(configured=False)
    return AuthenticationStatus(
        configured=True, jenkins_base_url=auth.jenkins_base_url, source=source
    )


@app.put("/config/auth", response_model=AuthenticationStatus)
async def put_authentication(body: AuthenticationRequest) -> AuthenticationStatus:
    """Store the Jenkins session used by subsequent batches."""
    auth = body.to_config()
    await save_auth_config(auth)
    logger.info(f"Stored Jenkins session for {auth.jenkins_base_url}")
    return AuthenticationStatus(
        configured=True, jenkins_base_url=auth.jenkins_base_url, source="stored"
    )


@app.delete("/config/auth", status_code=204, response_class=Response)
async def delete_authentication() -> Response:
    await delete_value(AUTH_CONFIG_KEY)
    return Response(status_code=204)


@app.post("/config/auth/test", response_model=AuthenticationCheck)
async def probe_authentication(
    settings: Settings = Depends(get_settings),
) -> AuthenticationCheck:
    """Probe Jenkins with the active session."""
    auth, _ = await resolve_authentication(settings)
    client = JenkinsClient(
        _require_authentication(auth),
        ssl_verify=settings.jenkins_ssl_verify,
        timeout=settings.request_timeout,
    )
    ok, detail = await asyncio.to_thread(client.check_authentication)
    return AuthenticationCheck(authenticated=ok, detail=detail)


@app.get("/config/builds", response_model=list[BuildConfig])
async def list_builds() -> list[BuildConfig]:
    return await get_build_configs()


@app.post("/config/builds", status_code=201, response_model=BuildConfig)
async def add_build(body: BuildConfigRequest) -> BuildConfig:
    """Add a build configuration; the URL must resolve to a job and build number."""
    config = _build_config_from_request(body)
    configs = await get_build_configs()
    _check_duplicate(configs, config)
    configs.append(config)
    await save_build_configs(configs)
    logger.info(f"Added build '{config.name}' ({config.job_name} #{config.build_number})")
    return config


@app.put("/config/builds/{index}", response_model=BuildConfig)
async def update_build(index: int, body: BuildConfigRequest) -> BuildConfig:
    configs = await get_build_configs()
    _check_index(configs, index)
    config = _build_config_from_request(body)
    _check_duplicate(configs, config, skip_index=index)
    configs[index] = config
    await save_build_configs(configs)
    return config


@app.delete("/config/builds/{index}", status_code=204, response_class=Response)
async def delete_build(index: int) -> Response:
    configs = await get_build_configs()
    _check_index(configs, index)
    removed = configs.pop(index)
    await save_build_configs(configs)
    logger.info(f"Removed build '{removed.name}'")
    return Response(status_code=204)


@app.post("/reports/refresh", response_model=DashboardResponse)
async def refresh_reports(
    settings: Settings = Depends(get_settings),
    coordinator: BatchCoordinator = Depends(get_coordinator),
) -> DashboardResponse:
    """Fetch every configured build now and return records with analytics.

    A refresh started while another is running supersedes it; the older
    request then answers 409.
    """
    auth, _ = await resolve_authentication(settings)
    auth = _require_authentication(auth)
    configs = await get_build_configs()

    try:
        result = await coordinator.refresh(configs, auth)
    except AggregationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if result is None:
        raise HTTPException(
            status_code=409, detail="Refresh superseded by a newer request"
        )

    return DashboardResponse(
        version=result.version,
        records=result.records,
        auth_rejected=result.auth_rejected,
        started_at_millis=result.started_at_millis,
        completed_at_millis=result.completed_at_millis,
        analysis=analyze_reports(result.records),
    )


@app.get("/reports", response_model=list[ReportRecord])
async def list_reports(
    filters: DashboardFilters = Depends(_dashboard_filters),
    coordinator: BatchCoordinator = Depends(get_coordinator),
) -> list[ReportRecord]:
    """Records of the latest batch, optionally filtered."""
    return filter_reports(_latest_batch(coordinator).records, filters)


@app.get("/reports/analysis", response_model=DashboardAnalysis)
async def get_analysis(
    filters: DashboardFilters = Depends(_dashboard_filters),
    coordinator: BatchCoordinator = Depends(get_coordinator),
) -> DashboardAnalysis:
    """Trend, flakiness, environment and duration views of the latest batch."""
    records = filter_reports(_latest_batch(coordinator).records, filters)
    return analyze_reports(records)


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "healthy"}


def run() -> None:
    """Entry point for the CLI."""
    import uvicorn

    reload = os.getenv("DEBUG", "").lower() == "true"
    uvicorn.run(
        "jenkins_allure_insight.main:app", host="0.0.0.0", port=8000, reload=reload
    )
