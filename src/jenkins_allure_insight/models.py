"""Pydantic models for build configuration, report records and derived views."""

from datetime import date
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    SecretStr,
    field_validator,
    model_validator,
)

from jenkins_allure_insight.exceptions import ResolutionError
from jenkins_allure_insight.urls import resolve_build_url

DEFAULT_ENVIRONMENT = "default"

TestStatus = Literal["passed", "failed", "broken", "skipped"]
RecordStatus = Literal["ok", "error"]
ErrorKind = Literal[
    "resolution",
    "timeout",
    "http_status",
    "auth_rejected",
    "malformed_body",
    "transport",
    "internal",
]

FAILING_STATUSES = frozenset({"failed", "broken"})


class AuthenticationConfig(BaseModel):
    """Credential-bearing inputs for every outbound read."""

    model_config = ConfigDict(frozen=True)

    jsession_id: SecretStr = Field(
        description="JSESSIONID cookie of an already authenticated Jenkins session"
    )
    jenkins_base_url: str = Field(description="Jenkins server base URL")

    @field_validator("jenkins_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class BuildConfig(BaseModel):
    """User-declared pointer to one Jenkins build.

    ``job_name`` and ``build_number`` are derived from ``build_url`` when not
    given. They stay ``None`` for URLs that cannot be resolved so the fetcher
    can report the problem as an error record.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Display label")
    build_url: str = Field(description="Full Jenkins build URL")
    job_name: str | None = Field(default=None, description="Jenkins job name")
    build_number: int | None = Field(default=None, ge=0, description="Build number")
    description: str | None = Field(default=None, description="Free text")
    environment: str = Field(
        default=DEFAULT_ENVIRONMENT, description="Grouping key for rollups"
    )
    tags: list[str] = Field(default_factory=list, description="Free-text labels")

    @model_validator(mode="before")
    @classmethod
    def _derive_identity(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if data.get("job_name") is not None and data.get("build_number") is not None:
            return data
        build_url = data.get("build_url")
        if not isinstance(build_url, str):
            return data
        try:
            identity = resolve_build_url(build_url)
        except ResolutionError:
            return data
        return {
            **data,
            "job_name": identity.job_name,
            "build_number": identity.build_number,
        }

    @field_validator("environment", mode="before")
    @classmethod
    def _default_environment(cls, value: Any) -> Any:
        return value or DEFAULT_ENVIRONMENT

    @field_validator("tags", mode="before")
    @classmethod
    def _unique_tags(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        if not isinstance(value, (list, tuple, set, frozenset)):
            return value
        tags: list[str] = []
        for tag in value:
            tag = str(tag).strip()
            if tag and tag not in tags:
                tags.append(tag)
        return tags


class TestOutcome(BaseModel):
    """One executed test case."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Test name")
    status: TestStatus = Field(description="Allure status")
    duration_millis: int = Field(default=0, ge=0)
    timestamp_millis: int = Field(default=0, description="Test start time")

    @property
    def is_failure(self) -> bool:
        return self.status in FAILING_STATUSES


class ReportSummary(BaseModel):
    """Aggregate Allure counts for one build."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(ge=0)
    passed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    broken: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    duration_millis: int = Field(default=0, ge=0)
    start_millis: int = Field(default=0)
    end_millis: int = Field(default=0)

    @property
    def is_consistent(self) -> bool:
        """Whether total equals the sum of the status counts."""
        return self.total == self.passed + self.failed + self.broken + self.skipped


class BuildLinks(BaseModel):
    """Display links derived from the build identity, never fetched."""

    model_config = ConfigDict(frozen=True)

    report_url: str
    console_url: str
    workspace_url: str


class ReportRecord(BaseModel):
    """Outcome of fetching one build's Allure report."""

    model_config = ConfigDict(frozen=True)

    build_config: BuildConfig
    job_name: str | None = Field(default=None, description="Resolved job name")
    build_number: int | None = Field(default=None, description="Resolved build number")
    summary: ReportSummary | None = None
    outcomes: list[TestOutcome] = Field(default_factory=list)
    report_url: str | None = Field(default=None, description="Allure report link")
    links: BuildLinks | None = None
    fetched_at_millis: int
    status: RecordStatus
    error_kind: ErrorKind | None = None
    error_detail: str | None = None
    auth_rejected: bool = Field(
        default=False, description="At least one read rejected the credential"
    )
    warnings: list[str] = Field(
        default_factory=list, description="Partial-read failures and data-quality notes"
    )

    @model_validator(mode="after")
    def check_error_detail(self) -> "ReportRecord":
        if (self.status == "error") != bool(self.error_detail):
            raise ValueError("error_detail must be set if and only if status is 'error'")
        return self


class TrendPoint(BaseModel):
    """Pass/fail counts for one calendar day."""

    date_key: str = Field(description="Calendar day (YYYY-MM-DD, UTC)")
    total: int = 0
    passed: int = 0
    failed: int = 0
    success_rate_percent: float = 0.0


class FlakyTestEntry(BaseModel):
    test_name: str
    job_name: str
    failure_rate_percent: float
    total_runs: int
    failed_runs: int
    last_failure_millis: int


class EnvironmentRollup(BaseModel):
    environment: str
    total: int = 0
    passed: int = 0
    failed: int = 0
    success_rate_percent: float = 0.0


class LongestRunningTest(BaseModel):
    test_name: str
    job_name: str
    average_duration_millis: float
    max_duration_millis: int
    min_duration_millis: int
    runs: int


class DashboardFilters(BaseModel):
    """Criteria for narrowing a batch of report records."""

    job_name: str | None = Field(
        default=None, description="Case-insensitive substring of the job name"
    )
    status: RecordStatus | None = None
    environment: str | None = None
    tag: str | None = None
    start_date: date | None = Field(default=None, description="Inclusive, UTC")
    end_date: date | None = Field(default=None, description="Inclusive, UTC")


class DashboardAnalysis(BaseModel):
    trend: list[TrendPoint] = Field(default_factory=list)
    flaky_tests: list[FlakyTestEntry] = Field(default_factory=list)
    environments: list[EnvironmentRollup] = Field(default_factory=list)
    longest_running: list[LongestRunningTest] = Field(default_factory=list)


class BatchResult(BaseModel):
    """Records of one completed fetch cycle, in configuration order."""

    version: int = Field(description="Monotonic batch number")
    records: list[ReportRecord] = Field(default_factory=list)
    auth_rejected: bool = Field(
        default=False, description="Jenkins rejected the session; re-authenticate"
    )
    started_at_millis: int = 0
    completed_at_millis: int = 0


class DashboardResponse(BatchResult):
    analysis: DashboardAnalysis = Field(default_factory=DashboardAnalysis)


# Upstream Allure payloads. Parsed strictly at the fetcher edge.


class AllureSummaryPayload(BaseModel):
    """Allure summary export in either the flat or the widget shape."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    total: int = Field(ge=0)
    passed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    broken: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    duration: int = Field(default=0, ge=0)
    start_time: int = Field(default=0, alias="startTime")
    end_time: int = Field(default=0, alias="endTime")

    @model_validator(mode="before")
    @classmethod
    def _flatten_widget_shape(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get("statistic"), dict):
            return data
        time_info = data.get("time")
        if not isinstance(time_info, dict):
            time_info = {}
        return {
            **data["statistic"],
            "duration": time_info.get("duration") or 0,
            "startTime": time_info.get("start") or 0,
            "endTime": time_info.get("stop") or 0,
        }

    def to_summary(self) -> ReportSummary:
        return ReportSummary(
            total=self.total,
            passed=self.passed,
            failed=self.failed,
            broken=self.broken,
            skipped=self.skipped,
            duration_millis=self.duration,
            start_millis=self.start_time,
            end_millis=self.end_time,
        )


class AllureResultPayload(BaseModel):
    """One entry of the Allure test result export."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str
    full_name: str | None = Field(default=None, alias="fullName")
    status: TestStatus
    start: int | None = None
    stop: int | None = None
    duration: int | None = Field(default=None, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _lift_time(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("time"), dict):
            time_info = data["time"]
            return {
                "start": time_info.get("start"),
                "stop": time_info.get("stop"),
                "duration": time_info.get("duration"),
                **{k: v for k, v in data.items() if k != "time"},
            }
        return data

    @field_validator("status", mode="before")
    @classmethod
    def _lowercase_status(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    def to_outcome(self) -> TestOutcome:
        start = self.start or 0
        if self.duration is not None:
            duration = self.duration
        else:
            duration = max((self.stop or 0) - start, 0)
        return TestOutcome(
            name=self.name,
            status=self.status,
            duration_millis=duration,
            timestamp_millis=start,
        )


# API request/response models


class AuthenticationRequest(BaseModel):
    jsession_id: str = Field(min_length=1, description="JSESSIONID cookie value")
    jenkins_base_url: HttpUrl = Field(description="Jenkins server base URL")

    def to_config(self) -> AuthenticationConfig:
        return AuthenticationConfig(
            jsession_id=SecretStr(self.jsession_id),
            jenkins_base_url=str(self.jenkins_base_url),
        )


class AuthenticationStatus(BaseModel):
    configured: bool
    jenkins_base_url: str | None = None
    source: Literal["stored", "environment"] | None = None


class AuthenticationCheck(BaseModel):
    authenticated: bool
    detail: str = ""


class BuildConfigRequest(BaseModel):
    """Request payload for adding or replacing a build configuration."""

    name: str = Field(min_length=1, description="Display label")
    build_url: str = Field(min_length=1, description="Full Jenkins build URL")
    description: str | None = None
    environment: str | None = None
    tags: list[str] = Field(default_factory=list)
