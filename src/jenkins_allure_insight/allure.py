"""Allure report fetching for a single Jenkins build."""

import asyncio
import os
import time

import httpx
from pydantic import TypeAdapter, ValidationError
from simple_logger.logger import get_logger

from jenkins_allure_insight import urls
from jenkins_allure_insight.exceptions import (
    AuthRejectedError,
    FetchError,
    FetchTimeoutError,
    HttpStatusError,
    MalformedBodyError,
    ResolutionError,
)
from jenkins_allure_insight.models import (
    AllureResultPayload,
    AllureSummaryPayload,
    AuthenticationConfig,
    BuildConfig,
    BuildLinks,
    ReportRecord,
    ReportSummary,
    TestOutcome,
)

logger = get_logger(name=__name__, level=os.environ.get("LOG_LEVEL", "INFO"))

DEFAULT_TIMEOUT = 30.0  # seconds, per read
SESSION_COOKIE = "JSESSIONID"

_RESULTS_ADAPTER = TypeAdapter(list[AllureResultPayload])


def now_millis() -> int:
    return int(time.time() * 1000)


def create_http_client(
    auth: AuthenticationConfig,
    timeout: float = DEFAULT_TIMEOUT,
    ssl_verify: bool = True,
) -> httpx.AsyncClient:
    """Create an HTTP client that sends the Jenkins session cookie on every read.

    Args:
        auth: Credential snapshot used for the lifetime of the client.
        timeout: Per-read timeout in seconds.
        ssl_verify: Whether to verify SSL certificates.

    Returns:
        A configured httpx.AsyncClient. The caller owns and closes it.
    """
    return httpx.AsyncClient(
        headers={
            "Accept": "application/json",
            "Cookie": f"{SESSION_COOKIE}={auth.jsession_id.get_secret_value()}",
        },
        timeout=timeout,
        verify=ssl_verify,
    )


def build_links(base_url: str, identity: urls.BuildIdentity) -> BuildLinks:
    return BuildLinks(
        report_url=urls.report_url(base_url, identity),
        console_url=urls.console_url(base_url, identity),
        workspace_url=urls.workspace_url(base_url, identity),
    )


async def _get(client: httpx.AsyncClient, url: str, timeout: float) -> httpx.Response:
    """Issue one authenticated GET and classify any failure as a FetchError.

    ``timeout`` bounds the whole read, including waiting for a pooled
    connection and a slowly trickling body.
    """
    try:
        async with asyncio.timeout(timeout):
            response = await client.get(url, timeout=timeout)
    except (TimeoutError, httpx.TimeoutException) as err:
        raise FetchTimeoutError(f"Timed out after {timeout}s reading {url}", url) from err
    except httpx.HTTPError as err:
        raise FetchError(f"Request to {url} failed: {err!s}", url) from err

    if response.status_code in (401, 403):
        raise AuthRejectedError(
            f"Jenkins rejected the session ({response.status_code}) for {url}",
            url,
            response.status_code,
        )
    if response.is_redirect and "login" in response.headers.get("location", ""):
        raise AuthRejectedError(
            f"Jenkins redirected to the login page for {url}",
            url,
            response.status_code,
        )
    if not response.is_success:
        raise HttpStatusError(
            f"Jenkins returned HTTP {response.status_code} for {url}",
            url,
            response.status_code,
        )
    return response


async def fetch_summary(
    client: httpx.AsyncClient,
    base_url: str,
    identity: urls.BuildIdentity,
    timeout: float = DEFAULT_TIMEOUT,
) -> ReportSummary:
    """Read the Allure summary totals for a build.

    Raises:
        FetchError: On timeout, non-2xx status, rejected session or bad body.
    """
    url = urls.summary_endpoint(base_url, identity)
    response = await _get(client, url, timeout)
    try:
        payload = AllureSummaryPayload.model_validate_json(response.content)
    except ValidationError as err:
        raise MalformedBodyError(
            f"Unexpected summary body from {url}: {err.error_count()} validation errors",
            url,
        ) from err

    summary = payload.to_summary()
    if not summary.is_consistent:
        logger.warning(
            f"Summary for {identity.job_name} #{identity.build_number} is inconsistent: "
            f"total={summary.total} but statuses add up to "
            f"{summary.passed + summary.failed + summary.broken + summary.skipped}"
        )
    return summary


async def fetch_test_outcomes(
    client: httpx.AsyncClient,
    base_url: str,
    identity: urls.BuildIdentity,
    timeout: float = DEFAULT_TIMEOUT,
) -> list[TestOutcome]:
    """Read the individual Allure test results for a build.

    Raises:
        FetchError: On timeout, non-2xx status, rejected session or bad body.
    """
    url = urls.results_endpoint(base_url, identity)
    response = await _get(client, url, timeout)
    try:
        payloads = _RESULTS_ADAPTER.validate_json(response.content)
    except ValidationError as err:
        raise MalformedBodyError(
            f"Unexpected test results body from {url}: {err.error_count()} validation errors",
            url,
        ) from err
    return [payload.to_outcome() for payload in payloads]


def _read_failure(result: object) -> FetchError | None:
    if isinstance(result, FetchError):
        return result
    if isinstance(result, BaseException):
        raise result
    return None


async def fetch_report(
    config: BuildConfig,
    auth: AuthenticationConfig,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    ssl_verify: bool = True,
) -> ReportRecord:
    """Fetch the Allure summary and test results of one build.

    Both reads run concurrently and fail independently. The record is marked
    ``error`` only when the build URL cannot be resolved or both reads fail;
    otherwise whatever was read is returned with ``status="ok"``.

    Args:
        config: Build to fetch.
        auth: Credential snapshot and Jenkins base URL.
        client: Shared HTTP client. A private one is created when omitted.
        timeout: Per-read timeout in seconds.
        ssl_verify: Whether to verify SSL certificates (private client only).

    Returns:
        The ReportRecord for this build. Never raises for fetch failures.
    """
    try:
        identity = urls.resolve_build_url(config.build_url)
    except ResolutionError as err:
        logger.warning(f"Cannot resolve build '{config.name}': {err}")
        return ReportRecord(
            build_config=config,
            job_name=config.job_name,
            build_number=config.build_number,
            fetched_at_millis=now_millis(),
            status="error",
            error_kind="resolution",
            error_detail=str(err),
        )

    if client is None:
        async with create_http_client(auth, timeout, ssl_verify) as own_client:
            return await _fetch_resolved(config, identity, auth, own_client, timeout)
    return await _fetch_resolved(config, identity, auth, client, timeout)


async def _fetch_resolved(
    config: BuildConfig,
    identity: urls.BuildIdentity,
    auth: AuthenticationConfig,
    client: httpx.AsyncClient,
    timeout: float,
) -> ReportRecord:
    base_url = auth.jenkins_base_url
    logger.debug(f"Fetching Allure report for {identity.job_name} #{identity.build_number}")

    summary_result, outcomes_result = await asyncio.gather(
        fetch_summary(client, base_url, identity, timeout),
        fetch_test_outcomes(client, base_url, identity, timeout),
        return_exceptions=True,
    )
    summary_error = _read_failure(summary_result)
    outcomes_error = _read_failure(outcomes_result)

    warnings: list[str] = []
    for label, error in (("summary", summary_error), ("test results", outcomes_error)):
        if error is not None:
            logger.warning(
                f"Failed to read {label} for {identity.job_name} #{identity.build_number}: {error}"
            )
            warnings.append(f"{label}: {error}")

    summary = None if summary_error else summary_result
    if summary is not None and not summary.is_consistent:
        warnings.append("summary: total does not match the sum of status counts")

    auth_rejected = any(
        isinstance(error, AuthRejectedError) for error in (summary_error, outcomes_error)
    )

    record_fields = dict(
        build_config=config,
        job_name=identity.job_name,
        build_number=identity.build_number,
        report_url=urls.report_url(base_url, identity),
        links=build_links(base_url, identity),
        fetched_at_millis=now_millis(),
        auth_rejected=auth_rejected,
        warnings=warnings,
    )

    if summary_error and outcomes_error:
        error_kind = "auth_rejected" if auth_rejected else summary_error.kind
        return ReportRecord(
            **record_fields,
            status="error",
            error_kind=error_kind,
            error_detail=f"summary: {summary_error}; test results: {outcomes_error}",
        )

    return ReportRecord(
        **record_fields,
        summary=summary,
        outcomes=[] if outcomes_error else outcomes_result,
        status="ok",
    )
