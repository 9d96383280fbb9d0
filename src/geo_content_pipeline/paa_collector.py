"""
"People Also Ask" collection through the Apify Google Search scraper.

This module submits a keyword to the scraping actor, waits for the run to
finish, and pulls the related-question strings out of the first result
item. An empty question list is a normal outcome; only credential,
submission and run failures are errors.
"""

import logging
import time
from typing import Any, Callable, Optional

import httpx
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_random_exponential,
)

from .config import PipelineConfig

logger = logging.getLogger(__name__)


class ExternalServiceError(Exception):
    """Raised when the scraping service is unavailable or a run fails."""
    pass


# Arrays on a result item that hold related questions, in lookup order
PAA_ARRAY_FIELDS = ("peopleAlsoAsk", "relatedQuestions")

# Keys that may carry the question text on each entry, first present wins
PAA_TEXT_FIELDS = ("question", "title", "text", "query")

TERMINAL_STATUSES = {"SUCCEEDED", "FAILED", "TIMED-OUT", "ABORTED"}

# Apify caps waitForFinish at 60 seconds per request
MAX_WAIT_PER_REQUEST = 60


def _question_text(entry: Any) -> str:
    if isinstance(entry, str):
        return entry.strip()
    if isinstance(entry, dict):
        for key in PAA_TEXT_FIELDS:
            value = entry.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return ""


def extract_paa_questions(item: Optional[dict]) -> list[str]:
    """
    Extract related-question strings from one scraper result item.

    Args:
        item: First dataset item of a scrape run, or None.

    Returns:
        Non-empty, trimmed question strings in source order.
    """
    if not isinstance(item, dict):
        return []

    raw = None
    for field_name in PAA_ARRAY_FIELDS:
        if isinstance(item.get(field_name), list):
            raw = item[field_name]
            break
    if not raw:
        return []

    questions = []
    for entry in raw:
        text = _question_text(entry)
        if text:
            questions.append(text)
    return questions


def _is_transient(exc: BaseException) -> bool:
    """Transport errors, 429 and 5xx responses are worth retrying."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


def _is_retryable_submission(exc: BaseException) -> bool:
    """A read timeout may mean the run was created; resubmitting could start a duplicate."""
    if isinstance(exc, httpx.ReadTimeout):
        return False
    return _is_transient(exc)


class PAACollector:
    """
    Client for collecting PAA questions with the Apify scraping actor.

    Args:
        config: Supplies the token, actor id, locale parameters, timeout
            and retry budget.
        http_client: Optional preconfigured httpx client (tests inject one
            backed by a mock transport).
        retry_wait: tenacity wait strategy between submission attempts.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        http_client: Optional[httpx.Client] = None,
        retry_wait: Optional[Callable] = None,
    ):
        self.config = config or PipelineConfig.from_env()
        self.token = self.config.apify_token
        self._client = http_client
        self._retry_wait = retry_wait or wait_random_exponential(multiplier=0.5, max=8)

    @property
    def is_available(self) -> bool:
        """Check if a scraping credential is configured."""
        return bool(self.token)

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.config.apify_base_url,
                timeout=httpx.Timeout(MAX_WAIT_PER_REQUEST + 30.0, connect=30.0),
                follow_redirects=True,
            )
        return self._client

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def build_run_input(self, keyword: str) -> dict:
        """Actor input with the fixed locale, result-count and device parameters."""
        return {
            "queries": keyword,
            "countryCode": self.config.country_code,
            "languageCode": self.config.language_code,
            "maxPagesPerQuery": 1,
            "resultsPerPage": self.config.results_per_page,
            "mobileResults": self.config.mobile_results,
            "includeUnfilteredResults": True,
            "saveHtml": False,
            "saveJson": True,
        }

    def _submit_run(self, keyword: str, wait_seconds: int) -> dict:
        actor_path = self.config.actor_id.replace("/", "~")
        response = self._http().post(
            f"/acts/{actor_path}/runs",
            params={"waitForFinish": wait_seconds},
            json=self.build_run_input(keyword),
            headers=self._headers(),
        )
        response.raise_for_status()
        return response.json()["data"]

    def _poll_run(self, run_id: str, wait_seconds: int) -> dict:
        response = self._http().get(
            f"/actor-runs/{run_id}",
            params={"waitForFinish": wait_seconds},
            headers=self._headers(),
        )
        response.raise_for_status()
        return response.json()["data"]

    def _abort_run(self, run_id: str) -> None:
        try:
            self._http().post(f"/actor-runs/{run_id}/abort", headers=self._headers())
        except httpx.HTTPError as e:
            logger.warning(f"[Apify] Could not abort run {run_id}: {e}")

    def _first_item(self, dataset_id: str) -> Optional[dict]:
        response = self._http().get(
            f"/datasets/{dataset_id}/items",
            params={"clean": "true", "format": "json", "limit": 1},
            headers=self._headers(),
        )
        response.raise_for_status()
        items = response.json()
        if not isinstance(items, list) or not items:
            return None
        return items[0]

    def _check_deadline(self, run: dict, deadline: float) -> None:
        """Abort an unfinished run and raise once the overall wait is used up."""
        if time.monotonic() < deadline:
            return
        logger.warning(f"[Apify] Scrape exceeded {self.config.scrape_timeout_seconds:.0f}s, giving up")
        if run.get("status") not in TERMINAL_STATUSES:
            self._abort_run(run["id"])
        raise ExternalServiceError(
            f"Scrape run did not finish within {self.config.scrape_timeout_seconds:.0f}s"
        )

    def _wait_for_run(self, run: dict, deadline: float) -> dict:
        while run.get("status") not in TERMINAL_STATUSES:
            self._check_deadline(run, deadline)
            remaining = deadline - time.monotonic()
            run = self._poll_run(run["id"], int(min(MAX_WAIT_PER_REQUEST, max(remaining, 1))))
        return run

    def collect(self, keyword: str) -> list[str]:
        """
        Collect PAA questions for a keyword.

        Args:
            keyword: Search query to scrape.

        Returns:
            List of question strings; empty when the search had none.

        Raises:
            ExternalServiceError: If the token is missing, the run cannot be
                submitted, the run fails, or it exceeds the configured wait.
        """
        if not self.is_available:
            raise ExternalServiceError("Missing APIFY_API_TOKEN")

        deadline = time.monotonic() + self.config.scrape_timeout_seconds
        first_wait = int(min(MAX_WAIT_PER_REQUEST, self.config.scrape_timeout_seconds))
        logger.info(f"[Apify] Starting scrape for keyword: {keyword}")

        retryer = Retrying(
            stop=(stop_after_attempt(self.config.scrape_max_attempts)
                  | stop_after_delay(self.config.scrape_timeout_seconds)),
            wait=self._retry_wait,
            retry=retry_if_exception(_is_retryable_submission),
            reraise=True,
        )
        try:
            run = retryer(self._submit_run, keyword, first_wait)
            self._check_deadline(run, deadline)
            run = self._wait_for_run(run, deadline)
            if run.get("status") != "SUCCEEDED":
                raise ExternalServiceError(f"Scrape run ended with status {run.get('status')}")
            item = self._first_item(run["defaultDatasetId"])
        except httpx.HTTPError as e:
            logger.error(f"[Apify] Request failed: {e}")
            raise ExternalServiceError(f"Scraping service request failed: {e}") from e
        except (KeyError, ValueError) as e:
            logger.error(f"[Apify] Unexpected response: {e}")
            raise ExternalServiceError(f"Unexpected scraping service response: {e}") from e

        if item is None:
            logger.warning(f"[Apify] No search results for keyword: {keyword}")
            return []

        questions = extract_paa_questions(item)
        if not questions:
            logger.warning(f"[Apify] No PAA data for keyword: {keyword}")
        else:
            logger.info(f"[Apify] Extracted {len(questions)} PAA questions for '{keyword}'")
        return questions
