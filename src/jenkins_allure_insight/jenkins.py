"""Jenkins API client used for the connectivity and authentication probe."""

import os

import jenkins
import urllib3
from simple_logger.logger import get_logger

from jenkins_allure_insight.allure import DEFAULT_TIMEOUT, SESSION_COOKIE
from jenkins_allure_insight.models import AuthenticationConfig
from jenkins_allure_insight.urls import JOBS_PROBE_QUERY

logger = get_logger(name=__name__, level=os.environ.get("LOG_LEVEL", "INFO"))


class JenkinsClient(jenkins.Jenkins):
    """Jenkins client that reuses an existing browser session."""

    def __init__(
        self,
        auth: AuthenticationConfig,
        ssl_verify: bool = True,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize Jenkins client.

        Args:
            auth: Jenkins base URL and the JSESSIONID of an authenticated session.
            ssl_verify: Whether to verify SSL certificates. Set to False for self-signed certs.
            timeout: Request timeout in seconds.
        """
        super().__init__(url=auth.jenkins_base_url, timeout=timeout)
        self._session.cookies.set(SESSION_COOKIE, auth.jsession_id.get_secret_value())
        if not ssl_verify:
            self._session.verify = False
            # Suppress InsecureRequestWarning
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def get_job_names(self) -> list[str]:
        """List top-level job names via ``api/json?tree=jobs[name]``."""
        info = self.get_info(query=JOBS_PROBE_QUERY)
        return [job.get("name", "") for job in info.get("jobs", [])]

    def check_authentication(self) -> tuple[bool, str]:
        """Verify that Jenkins is reachable and accepts the session.

        Returns:
            Tuple of (ok, message). On failure ok is False and message
            describes the problem.
        """
        try:
            job_names = self.get_job_names()
        except jenkins.NotFoundException:
            return False, f"Jenkins API not found at {self.server}"
        except jenkins.TimeoutException as e:
            return False, f"Jenkins did not respond in time: {e!s}"
        except jenkins.JenkinsException as e:
            error_msg = str(e).lower()
            if (
                "unauthorized" in error_msg
                or "401" in error_msg
                or "forbidden" in error_msg
                or "403" in error_msg
                or "authentication failed" in error_msg
            ):
                return False, "Jenkins rejected the session. Please re-authenticate."
            return False, f"Jenkins error: {e!s}"
        except Exception as e:
            logger.warning(f"Jenkins connectivity check failed: {e}")
            return False, f"Failed to connect to Jenkins: {e!s}"

        logger.info(f"Jenkins session accepted ({len(job_names)} jobs visible)")
        return True, ""
