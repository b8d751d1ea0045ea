"""Derived analytics over a batch of report records.

Every function here is pure: the same input sequence always produces the
same output, and nothing is kept between calls.
"""

from collections import defaultdict
from collections.abc import Sequence
from datetime import date, datetime, timezone

from jenkins_allure_insight.models import (
    DEFAULT_ENVIRONMENT,
    DashboardAnalysis,
    DashboardFilters,
    EnvironmentRollup,
    FlakyTestEntry,
    LongestRunningTest,
    ReportRecord,
    TrendPoint,
)

FLAKY_TEST_LIMIT = 10
LONGEST_RUNNING_LIMIT = 10


def success_rate(passed: int, total: int) -> float:
    """Percentage of passed tests, rounded to 2 decimals; 0 when total is 0."""
    if total <= 0:
        return 0.0
    return round(passed / total * 100, 2)


def record_date(record: ReportRecord) -> date:
    return datetime.fromtimestamp(record.fetched_at_millis / 1000, tz=timezone.utc).date()


def _record_job_name(record: ReportRecord) -> str:
    return record.job_name or record.build_config.job_name or ""


def compute_trend(records: Sequence[ReportRecord]) -> list[TrendPoint]:
    """Sum pass/fail counts per calendar day, ascending by date.

    Records without a summary still create their day but add no counts.
    """
    days: dict[str, list[int]] = {}
    for record in records:
        counts = days.setdefault(record_date(record).isoformat(), [0, 0, 0])
        if record.summary is not None:
            counts[0] += record.summary.total
            counts[1] += record.summary.passed
            counts[2] += record.summary.failed

    return [
        TrendPoint(
            date_key=day,
            total=total,
            passed=passed,
            failed=failed,
            success_rate_percent=success_rate(passed, total),
        )
        for day, (total, passed, failed) in sorted(days.items())
    ]


def compute_flaky_tests(
    records: Sequence[ReportRecord], limit: int = FLAKY_TEST_LIMIT
) -> list[FlakyTestEntry]:
    """Rank tests by failure rate across every fetched record.

    A run counts as failing when its status is failed or broken. Only tests
    with at least one failing run are kept. Ties are broken by more runs
    first, then by test name.

    Args:
        records: Report records of the current batch.
        limit: Maximum number of entries to return.

    Returns:
        Up to ``limit`` entries, highest failure rate first.
    """
    runs: dict[str, int] = defaultdict(int)
    failures: dict[str, int] = defaultdict(int)
    # test name -> (timestamp, job name) of the most recent failing run
    last_failure: dict[str, tuple[int, str]] = {}

    for record in records:
        job_name = _record_job_name(record)
        for outcome in record.outcomes:
            runs[outcome.name] += 1
            if not outcome.is_failure:
                continue
            failures[outcome.name] += 1
            previous = last_failure.get(outcome.name)
            if previous is None or outcome.timestamp_millis > previous[0]:
                last_failure[outcome.name] = (outcome.timestamp_millis, job_name)

    ranked = sorted(
        failures,
        key=lambda name: (-failures[name] / runs[name], -runs[name], name),
    )

    entries: list[FlakyTestEntry] = []
    for name in ranked[:limit]:
        timestamp, job_name = last_failure[name]
        entries.append(
            FlakyTestEntry(
                test_name=name,
                job_name=job_name,
                failure_rate_percent=round(failures[name] / runs[name] * 100, 2),
                total_runs=runs[name],
                failed_runs=failures[name],
                last_failure_millis=timestamp,
            )
        )
    return entries


def compute_environment_rollup(
    records: Sequence[ReportRecord],
) -> list[EnvironmentRollup]:
    """Sum pass/fail counts per build environment, in first-seen order."""
    environments: dict[str, list[int]] = {}
    for record in records:
        key = record.build_config.environment or DEFAULT_ENVIRONMENT
        counts = environments.setdefault(key, [0, 0, 0])
        if record.summary is not None:
            counts[0] += record.summary.total
            counts[1] += record.summary.passed
            counts[2] += record.summary.failed

    return [
        EnvironmentRollup(
            environment=environment,
            total=total,
            passed=passed,
            failed=failed,
            success_rate_percent=success_rate(passed, total),
        )
        for environment, (total, passed, failed) in environments.items()
    ]


def compute_longest_running_tests(
    records: Sequence[ReportRecord], limit: int = LONGEST_RUNNING_LIMIT
) -> list[LongestRunningTest]:
    """Rank tests by average duration, longest first."""
    durations: dict[str, list[int]] = defaultdict(list)
    job_names: dict[str, str] = {}
    for record in records:
        for outcome in record.outcomes:
            durations[outcome.name].append(outcome.duration_millis)
            job_names.setdefault(outcome.name, _record_job_name(record))

    ranked = sorted(
        durations,
        key=lambda name: (-sum(durations[name]) / len(durations[name]), name),
    )
    return [
        LongestRunningTest(
            test_name=name,
            job_name=job_names[name],
            average_duration_millis=round(sum(durations[name]) / len(durations[name]), 2),
            max_duration_millis=max(durations[name]),
            min_duration_millis=min(durations[name]),
            runs=len(durations[name]),
        )
        for name in ranked[:limit]
    ]


def filter_reports(
    records: Sequence[ReportRecord], filters: DashboardFilters
) -> list[ReportRecord]:
    """Keep the records matching every criterion that is set."""
    job_fragment = filters.job_name.lower() if filters.job_name else None

    def matches(record: ReportRecord) -> bool:
        if job_fragment and job_fragment not in _record_job_name(record).lower():
            return False
        if filters.status and record.status != filters.status:
            return False
        if filters.environment and record.build_config.environment != filters.environment:
            return False
        if filters.tag and filters.tag not in record.build_config.tags:
            return False
        if filters.start_date or filters.end_date:
            day = record_date(record)
            if filters.start_date and day < filters.start_date:
                return False
            if filters.end_date and day > filters.end_date:
                return False
        return True

    return [record for record in records if matches(record)]


def analyze_reports(records: Sequence[ReportRecord]) -> DashboardAnalysis:
    """Compute every derived view for one batch."""
    return DashboardAnalysis(
        trend=compute_trend(records),
        flaky_tests=compute_flaky_tests(records),
        environments=compute_environment_rollup(records),
        longest_running=compute_longest_running_tests(records),
    )
