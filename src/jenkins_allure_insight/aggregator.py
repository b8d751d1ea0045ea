"""Concurrent report fetching across all configured builds."""

import asyncio
import contextlib
import os
from collections.abc import Awaitable, Callable, Sequence

import httpx
from simple_logger.logger import get_logger

from jenkins_allure_insight.allure import (
    DEFAULT_TIMEOUT,
    create_http_client,
    fetch_report,
    now_millis,
)
from jenkins_allure_insight.exceptions import AggregationError
from jenkins_allure_insight.models import (
    AuthenticationConfig,
    BatchResult,
    BuildConfig,
    ReportRecord,
)

logger = get_logger(name=__name__, level=os.environ.get("LOG_LEVEL", "INFO"))

# Retrying cannot fix a bad URL or a rejected session
NON_RETRYABLE_ERRORS = frozenset({"resolution", "auth_rejected"})


def _validate_configs(configs: Sequence[BuildConfig]) -> list[BuildConfig]:
    if isinstance(configs, (str, bytes)) or not isinstance(configs, Sequence):
        raise AggregationError(
            f"Build configurations must be an ordered sequence, got {type(configs).__name__}"
        )
    invalid = [
        index for index, config in enumerate(configs) if not isinstance(config, BuildConfig)
    ]
    if invalid:
        raise AggregationError(
            f"Entries at positions {invalid} are not build configurations"
        )
    return list(configs)


def _internal_error_record(config: BuildConfig, error: BaseException) -> ReportRecord:
    return ReportRecord(
        build_config=config,
        job_name=config.job_name,
        build_number=config.build_number,
        fetched_at_millis=now_millis(),
        status="error",
        error_kind="internal",
        error_detail=f"Unexpected error: {error!r}",
    )


def _is_retryable(record: ReportRecord) -> bool:
    return record.status == "error" and record.error_kind not in NON_RETRYABLE_ERRORS


async def _gather_records(
    configs: list[BuildConfig],
    auth: AuthenticationConfig,
    client: httpx.AsyncClient,
    timeout: float,
) -> list[ReportRecord]:
    """Fetch every build at once and wait for all of them to settle."""
    results = await asyncio.gather(
        *[
            fetch_report(config, auth, client=client, timeout=timeout)
            for config in configs
        ],
        return_exceptions=True,
    )

    records: list[ReportRecord] = []
    for config, result in zip(configs, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            logger.error(
                f"Failed to fetch report for '{config.name}': {result}", exc_info=result
            )
            records.append(_internal_error_record(config, result))
        else:
            records.append(result)
    return records


async def fetch_all(
    configs: Sequence[BuildConfig],
    auth: AuthenticationConfig,
    timeout: float = DEFAULT_TIMEOUT,
    max_retries: int = 0,
    ssl_verify: bool = True,
    client: httpx.AsyncClient | None = None,
) -> list[ReportRecord]:
    """Fetch the Allure report of every configured build.

    All builds are fetched concurrently and one failing build never prevents
    the others from being returned. Records come back in input order.

    Args:
        configs: Ordered build configurations.
        auth: Credential snapshot used for the whole batch.
        timeout: Per-read timeout in seconds.
        max_retries: Extra rounds for builds whose record ended in a retryable error.
        ssl_verify: Whether to verify SSL certificates.
        client: Shared HTTP client. A private one is created when omitted.

    Returns:
        One ReportRecord per input configuration, same order.

    Raises:
        AggregationError: If configs is not a sequence of BuildConfig.
    """
    build_configs = _validate_configs(configs)
    if not build_configs:
        return []

    logger.info(f"Fetching Allure reports for {len(build_configs)} builds")

    async with contextlib.AsyncExitStack() as stack:
        if client is None:
            client = await stack.enter_async_context(
                create_http_client(auth, timeout, ssl_verify)
            )

        records = await _gather_records(build_configs, auth, client, timeout)

        for attempt in range(1, max_retries + 1):
            retry_positions = [
                index for index, record in enumerate(records) if _is_retryable(record)
            ]
            if not retry_positions:
                break
            logger.info(
                f"Retrying {len(retry_positions)} failed builds (attempt {attempt}/{max_retries})"
            )
            retried = await _gather_records(
                [build_configs[index] for index in retry_positions],
                auth,
                client,
                timeout,
            )
            for index, record in zip(retry_positions, retried):
                records[index] = record

    failed = sum(1 for record in records if record.status == "error")
    logger.info(
        f"Fetched {len(records)} Allure reports ({len(records) - failed} ok, {failed} failed)"
    )
    return records


class BatchCoordinator:
    """Runs fetch batches and publishes only the most recently requested one.

    Starting a new batch cancels the one in flight. A batch that finishes
    after it was superseded is discarded and never replaces ``latest``.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = 0,
        ssl_verify: bool = True,
    ) -> None:
        self.timeout = timeout
        self.max_retries = max_retries
        self.ssl_verify = ssl_verify
        self.latest: BatchResult | None = None
        self._version = 0
        self._task: asyncio.Task | None = None

    @property
    def version(self) -> int:
        return self._version

    async def refresh(
        self, configs: Sequence[BuildConfig], auth: AuthenticationConfig
    ) -> BatchResult | None:
        """Fetch a new batch, superseding any batch still in flight.

        Args:
            configs: Ordered build configurations for this batch.
            auth: Credential snapshot; later credential changes do not affect it.

        Returns:
            The published BatchResult, or None if a newer batch superseded this one.

        Raises:
            AggregationError: If configs is not a sequence of BuildConfig.
        """
        build_configs = _validate_configs(configs)

        self._version += 1
        version = self._version
        if self._task is not None and not self._task.done():
            logger.info(f"Cancelling batch superseded by batch {version}")
            self._task.cancel()

        started_at = now_millis()
        task = asyncio.create_task(
            fetch_all(
                build_configs,
                auth,
                timeout=self.timeout,
                max_retries=self.max_retries,
                ssl_verify=self.ssl_verify,
            )
        )
        self._task = task

        try:
            records = await task
        except asyncio.CancelledError:
            if version != self._version and not _current_task_cancelling():
                logger.debug(f"Batch {version} cancelled after being superseded")
                return None
            raise

        if version != self._version:
            logger.debug(f"Discarding stale batch {version} (current: {self._version})")
            return None

        result = BatchResult(
            version=version,
            records=records,
            auth_rejected=any(record.auth_rejected for record in records),
            started_at_millis=started_at,
            completed_at_millis=now_millis(),
        )
        if result.auth_rejected:
            logger.warning("Jenkins rejected the session; re-authentication required")
        self.latest = result
        return result

    async def poll(
        self,
        load_inputs: Callable[
            [], Awaitable[tuple[list[BuildConfig], AuthenticationConfig | None]]
        ],
        interval: float,
    ) -> None:
        """Refresh on a fixed interval until cancelled.

        Args:
            load_inputs: Returns the current build configurations and credentials.
            interval: Seconds to wait between batches.
        """
        while True:
            try:
                configs, auth = await load_inputs()
                if auth is None or not configs:
                    logger.debug("Skipping scheduled refresh: nothing configured")
                else:
                    await self.refresh(configs, auth)
            except Exception:
                logger.exception("Scheduled refresh failed")
            await asyncio.sleep(interval)


def _current_task_cancelling() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0
