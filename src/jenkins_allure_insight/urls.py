"""Build URL resolution and Jenkins/Allure endpoint construction."""

import re
from functools import lru_cache
from typing import NamedTuple
from urllib.parse import urlparse

from jenkins_allure_insight.exceptions import (
    MalformedUrlError,
    UnrecognizedPatternError,
)

SUMMARY_PATH = "allure-results/api/rs/allure2/export/summary.json"
TEST_RESULTS_PATH = "allure-results/api/rs/allure2/export/testresult.json"
JOBS_PROBE_QUERY = "?tree=jobs[name]"

_BUILD_NUMBER = re.compile(r"[0-9]+")


class BuildIdentity(NamedTuple):
    """Job name and build number resolved from a build URL."""

    job_name: str
    build_number: int


@lru_cache(maxsize=1024)
def resolve_build_url(build_url: str) -> BuildIdentity:
    """Parse a Jenkins build URL into its job name and build number.

    The path must contain a ``job`` segment followed by the job name and the
    build number. Consecutive ``job/<name>`` pairs (folders) are joined with
    ``/job/`` so the result can be substituted back into a URL. Anything after
    the build number is ignored.

    Args:
        build_url: Full Jenkins build URL.

    Returns:
        The resolved BuildIdentity.

    Raises:
        MalformedUrlError: If the input is not a well-formed http(s) URL.
        UnrecognizedPatternError: If the path does not follow /job/<name>/<number>/.

    Examples:
        >>> resolve_build_url("http://jenkins/job/ui-tests/42/")
        BuildIdentity(job_name='ui-tests', build_number=42)
        >>> resolve_build_url("https://jenkins.example.com/job/folder/job/my-job/456/allure/")
        BuildIdentity(job_name='folder/job/my-job', build_number=456)
    """
    try:
        parsed = urlparse(build_url)
    except (TypeError, ValueError) as err:
        raise MalformedUrlError(str(build_url), "Malformed build URL") from err

    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise MalformedUrlError(build_url, "Malformed build URL")

    parts = [part for part in parsed.path.split("/") if part]
    if "job" not in parts:
        raise UnrecognizedPatternError(
            build_url, "Expected pattern /job/<jobName>/<buildNumber>/ in URL"
        )

    index = parts.index("job")
    job_parts: list[str] = []
    while index + 1 < len(parts) and parts[index] == "job":
        job_parts.append(parts[index + 1])
        index += 2

    if not job_parts or index >= len(parts):
        raise UnrecognizedPatternError(
            build_url, "Expected pattern /job/<jobName>/<buildNumber>/ in URL"
        )

    if not _BUILD_NUMBER.fullmatch(parts[index]):
        raise UnrecognizedPatternError(
            build_url, "Could not parse build number from URL"
        )

    return BuildIdentity("/job/".join(job_parts), int(parts[index]))


def build_base_url(base_url: str, identity: BuildIdentity) -> str:
    """Return the canonical build page URL, always ending with a slash."""
    return (
        f"{base_url.rstrip('/')}/job/{identity.job_name}/{identity.build_number}/"
    )


def summary_endpoint(base_url: str, identity: BuildIdentity) -> str:
    return build_base_url(base_url, identity) + SUMMARY_PATH


def results_endpoint(base_url: str, identity: BuildIdentity) -> str:
    return build_base_url(base_url, identity) + TEST_RESULTS_PATH


def report_url(base_url: str, identity: BuildIdentity) -> str:
    return build_base_url(base_url, identity) + "allure/"


def console_url(base_url: str, identity: BuildIdentity) -> str:
    return build_base_url(base_url, identity) + "console"


def workspace_url(base_url: str, identity: BuildIdentity) -> str:
    return build_base_url(base_url, identity) + "ws/"
