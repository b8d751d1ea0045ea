"""Tests for derived dashboard metrics."""

from datetime import date

import pytest

from conftest import DAY_MILLIS, DAY_ONE_MILLIS, make_record, outcome
from jenkins_allure_insight.metrics import (
    analyze_reports,
    compute_environment_rollup,
    compute_flaky_tests,
    compute_longest_running_tests,
    compute_trend,
    filter_reports,
    success_rate,
)
from jenkins_allure_insight.models import DashboardFilters, ReportSummary


class TestSuccessRate:
    def test_rounds_to_two_decimals(self) -> None:
        assert success_rate(5, 7) == 71.43

    def test_zero_total(self) -> None:
        assert success_rate(0, 0) == 0.0

    def test_full_pass(self) -> None:
        assert success_rate(4, 4) == 100.0


class TestComputeTrend:
    """Tests for the compute_trend function."""

    def test_groups_by_day_ascending(self) -> None:
        records = [
            make_record(
                build_number=2,
                summary=ReportSummary(total=4, passed=4),
                fetched_at_millis=DAY_ONE_MILLIS + DAY_MILLIS,
            ),
            make_record(
                build_number=1,
                summary=ReportSummary(total=7, passed=5, failed=2),
                fetched_at_millis=DAY_ONE_MILLIS,
            ),
        ]
        trend = compute_trend(records)

        assert [point.date_key for point in trend] == ["2024-01-01", "2024-01-02"]
        assert trend[0].total == 7
        assert trend[0].passed == 5
        assert trend[0].failed == 2
        assert trend[0].success_rate_percent == 71.43
        assert trend[1].success_rate_percent == 100.0

    def test_sums_records_of_the_same_day(self) -> None:
        records = [
            make_record(build_number=1, summary=ReportSummary(total=3, passed=2, failed=1)),
            make_record(
                build_number=2,
                summary=ReportSummary(total=4, passed=3, failed=1),
                fetched_at_millis=DAY_ONE_MILLIS + 1000,
            ),
        ]
        (point,) = compute_trend(records)
        assert (point.total, point.passed, point.failed) == (7, 5, 2)
        assert point.success_rate_percent == 71.43

    def test_records_without_summary_still_create_day(self) -> None:
        records = [
            make_record(status="error", fetched_at_millis=DAY_ONE_MILLIS + 2 * DAY_MILLIS)
        ]
        (point,) = compute_trend(records)
        assert point.date_key == "2024-01-03"
        assert point.total == 0
        assert point.success_rate_percent == 0.0

    def test_empty(self) -> None:
        assert compute_trend([]) == []


class TestComputeFlakyTests:
    """Tests for the compute_flaky_tests function."""

    @pytest.fixture
    def records(self):
        return [
            make_record(
                job_name="api",
                build_number=1,
                outcomes=[
                    outcome("A", "passed", 1),
                    outcome("B", "failed", 1),
                    outcome("C", "passed", 1),
                ],
            ),
            make_record(
                job_name="api",
                build_number=2,
                outcomes=[
                    outcome("A", "failed", 2),
                    outcome("B", "broken", 2),
                    outcome("C", "passed", 2),
                ],
            ),
            make_record(
                job_name="ui",
                build_number=3,
                outcomes=[
                    outcome("A", "passed", 3),
                    outcome("B", "failed", 3),
                    outcome("B", "passed", 4),
                    outcome("B", "skipped", 5),
                ],
            ),
        ]

    def test_ranking(self, records) -> None:
        """A: 3 runs 1 failed, B: 5 runs 3 failed, C: never fails."""
        flaky = compute_flaky_tests(records)

        assert [entry.test_name for entry in flaky] == ["B", "A"]
        assert flaky[0].failure_rate_percent == 60.0
        assert flaky[0].total_runs == 5
        assert flaky[0].failed_runs == 3
        assert flaky[1].failure_rate_percent == 33.33
        assert flaky[1].total_runs == 3

    def test_last_failure_and_job(self, records) -> None:
        flaky = {entry.test_name: entry for entry in compute_flaky_tests(records)}
        assert flaky["B"].last_failure_millis == 3
        assert flaky["B"].job_name == "ui"
        assert flaky["A"].last_failure_millis == 2
        assert flaky["A"].job_name == "api"

    def test_ties_broken_by_runs_then_name(self) -> None:
        records = [
            make_record(
                outcomes=[
                    outcome("zeta", "failed"),
                    outcome("alpha", "failed"),
                    outcome("many", "failed"),
                    outcome("many", "failed"),
                ]
            )
        ]
        names = [entry.test_name for entry in compute_flaky_tests(records)]
        assert names == ["many", "alpha", "zeta"]

    def test_truncated_to_ten(self) -> None:
        records = [
            make_record(outcomes=[outcome(f"test_{i:02d}", "failed") for i in range(15)])
        ]
        flaky = compute_flaky_tests(records)
        assert len(flaky) == 10
        assert flaky[0].test_name == "test_00"
        assert flaky[-1].test_name == "test_09"

    def test_no_failures(self) -> None:
        records = [make_record(outcomes=[outcome("A", "passed")])]
        assert compute_flaky_tests(records) == []


class TestComputeEnvironmentRollup:
    """Tests for the compute_environment_rollup function."""

    def test_groups_by_environment(self) -> None:
        records = [
            make_record(
                build_number=1,
                environment="staging",
                summary=ReportSummary(total=10, passed=9, failed=1),
            ),
            make_record(
                build_number=2,
                summary=ReportSummary(total=4, passed=2, failed=2),
            ),
            make_record(
                build_number=3,
                environment="staging",
                summary=ReportSummary(total=10, passed=8, failed=2),
            ),
            make_record(build_number=4, environment="prod", status="error"),
        ]
        rollup = {entry.environment: entry for entry in compute_environment_rollup(records)}

        assert set(rollup) == {"staging", "default", "prod"}
        assert rollup["staging"].total == 20
        assert rollup["staging"].passed == 17
        assert rollup["staging"].failed == 3
        assert rollup["staging"].success_rate_percent == 85.0
        assert rollup["default"].success_rate_percent == 50.0
        assert rollup["prod"].total == 0
        assert rollup["prod"].success_rate_percent == 0.0


class TestComputeLongestRunningTests:
    def test_ranked_by_average_duration(self) -> None:
        records = [
            make_record(
                job_name="api",
                outcomes=[
                    outcome("quick", "passed", duration=100),
                    outcome("slow", "passed", duration=5000),
                ],
            ),
            make_record(
                job_name="api",
                build_number=2,
                outcomes=[outcome("slow", "failed", duration=3000)],
            ),
        ]
        longest = compute_longest_running_tests(records)

        assert [entry.test_name for entry in longest] == ["slow", "quick"]
        assert longest[0].average_duration_millis == 4000.0
        assert longest[0].max_duration_millis == 5000
        assert longest[0].min_duration_millis == 3000
        assert longest[0].runs == 2
        assert longest[0].job_name == "api"


class TestFilterReports:
    """Tests for the filter_reports function."""

    @pytest.fixture
    def records(self):
        return [
            make_record(job_name="UI-Tests", environment="staging", tags=["nightly"]),
            make_record(
                job_name="api-tests",
                environment="prod",
                status="error",
                fetched_at_millis=DAY_ONE_MILLIS + DAY_MILLIS,
            ),
        ]

    def test_no_filters(self, records) -> None:
        assert filter_reports(records, DashboardFilters()) == records

    def test_job_name_case_insensitive_substring(self, records) -> None:
        filtered = filter_reports(records, DashboardFilters(job_name="ui"))
        assert [r.job_name for r in filtered] == ["UI-Tests"]

    def test_status(self, records) -> None:
        filtered = filter_reports(records, DashboardFilters(status="error"))
        assert [r.job_name for r in filtered] == ["api-tests"]

    def test_environment_and_tag(self, records) -> None:
        assert len(filter_reports(records, DashboardFilters(environment="prod"))) == 1
        assert len(filter_reports(records, DashboardFilters(tag="nightly"))) == 1
        assert filter_reports(records, DashboardFilters(tag="weekly")) == []

    def test_date_range_inclusive(self, records) -> None:
        filtered = filter_reports(
            records, DashboardFilters(start_date=date(2024, 1, 2), end_date=date(2024, 1, 2))
        )
        assert [r.job_name for r in filtered] == ["api-tests"]
        filtered = filter_reports(records, DashboardFilters(end_date=date(2024, 1, 1)))
        assert [r.job_name for r in filtered] == ["UI-Tests"]


class TestIdempotence:
    def test_same_input_same_output(self) -> None:
        records = [
            make_record(
                job_name="api",
                environment="qa",
                summary=ReportSummary(total=3, passed=2, failed=1),
                outcomes=[outcome("A", "failed", 5, 10), outcome("B", "passed", 6, 20)],
            ),
            make_record(
                job_name="ui",
                build_number=2,
                summary=ReportSummary(total=2, passed=2),
                outcomes=[outcome("A", "passed", 7, 30)],
                fetched_at_millis=DAY_ONE_MILLIS + DAY_MILLIS,
            ),
        ]
        first = analyze_reports(records).model_dump_json()
        second = analyze_reports(records).model_dump_json()
        assert first == second
