"""Shared fixtures for jenkins-allure-insight tests."""

import json
import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import httpx
import pytest
from pydantic import SecretStr

from jenkins_allure_insight.models import (
    AuthenticationConfig,
    BuildConfig,
    ReportRecord,
    ReportSummary,
    TestOutcome,
)

BASE_URL = "https://jenkins.example.com"
SUMMARY_SUFFIX = "/allure-results/api/rs/allure2/export/summary.json"
RESULTS_SUFFIX = "/allure-results/api/rs/allure2/export/testresult.json"

# 2024-01-01T12:00:00Z
DAY_ONE_MILLIS = 1704110400000
DAY_MILLIS = 24 * 60 * 60 * 1000


@pytest.fixture
def mock_env_vars() -> Generator[dict[str, str], None, None]:
    """Provide minimal environment variables for Settings."""
    env = {
        "JENKINS_BASE_URL": BASE_URL,
        "JENKINS_SESSION_ID": "node0abc123",  # pragma: allowlist secret
    }
    with patch.dict(os.environ, env, clear=False):
        yield env


@pytest.fixture
def temp_db_path() -> Generator[Path, None, None]:
    """Create a temporary database path for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    yield db_path
    if db_path.exists():
        db_path.unlink()


@pytest.fixture
def auth_config() -> AuthenticationConfig:
    return AuthenticationConfig(
        jsession_id=SecretStr("node0abc123"),  # pragma: allowlist secret
        jenkins_base_url=BASE_URL,
    )


@pytest.fixture
def build_config() -> BuildConfig:
    return BuildConfig(
        name="UI tests",
        build_url=f"{BASE_URL}/job/ui-tests/42/",
        environment="staging",
        tags=["ui", "nightly"],
    )


def summary_payload(
    total: int = 10,
    passed: int = 8,
    failed: int = 2,
    broken: int = 0,
    skipped: int = 0,
) -> dict:
    return {
        "total": total,
        "passed": passed,
        "failed": failed,
        "broken": broken,
        "skipped": skipped,
        "duration": 120000,
        "startTime": DAY_ONE_MILLIS,
        "endTime": DAY_ONE_MILLIS + 120000,
    }


def results_payload() -> list[dict]:
    return [
        {
            "uuid": "a1",
            "name": "test_login",
            "fullName": "tests.test_auth.test_login",
            "status": "passed",
            "start": DAY_ONE_MILLIS,
            "stop": DAY_ONE_MILLIS + 1500,
            "duration": 1500,
        },
        {
            "uuid": "a2",
            "name": "test_logout",
            "fullName": "tests.test_auth.test_logout",
            "status": "failed",
            "start": DAY_ONE_MILLIS + 2000,
            "stop": DAY_ONE_MILLIS + 2600,
        },
    ]


def json_response(payload: object, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode())


@pytest.fixture
def make_client() -> Callable[[Callable], httpx.AsyncClient]:
    """Build an AsyncClient whose requests are answered by a handler."""

    def factory(handler: Callable) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            headers={"Cookie": "JSESSIONID=node0abc123"},
        )

    return factory


def make_record(
    job_name: str = "ui-tests",
    build_number: int = 1,
    environment: str | None = None,
    summary: ReportSummary | None = None,
    outcomes: list[TestOutcome] | None = None,
    fetched_at_millis: int = DAY_ONE_MILLIS,
    status: str = "ok",
    tags: list[str] | None = None,
) -> ReportRecord:
    """Build a ReportRecord without any network access."""
    config = BuildConfig(
        name=f"{job_name} #{build_number}",
        build_url=f"{BASE_URL}/job/{job_name}/{build_number}/",
        environment=environment,
        tags=tags or [],
    )
    return ReportRecord(
        build_config=config,
        job_name=job_name,
        build_number=build_number,
        summary=summary,
        outcomes=outcomes or [],
        fetched_at_millis=fetched_at_millis,
        status=status,
        error_kind="timeout" if status == "error" else None,
        error_detail="summary: timed out; test results: timed out"
        if status == "error"
        else None,
    )


def outcome(name: str, status: str, timestamp: int = 0, duration: int = 0) -> TestOutcome:
    return TestOutcome(
        name=name, status=status, timestamp_millis=timestamp, duration_millis=duration
    )
