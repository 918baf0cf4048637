"""GitHub REST client: the issue source for all reports."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date, datetime
from typing import Iterator, Optional
from urllib.parse import quote

import requests

from services.errors import SourceFetchError
from services.models import Issue, project_issue

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"
PAGE_SIZE = 100


class RateLimit:
    """Last rate-limit headers seen by a client.

    Shared by every pool thread of a client; the remaining/reset pair is
    always read and written together under the lock.
    """

    def __init__(self):
        self.remaining = None
        self.reset = None
        self._lock = threading.Lock()

    def update(self, response: requests.Response) -> None:
        remaining = _header_value(response, "X-RateLimit-Remaining", int)
        reset = _header_value(response, "X-RateLimit-Reset", float)
        with self._lock:
            if remaining is not None:
                self.remaining = remaining
            if reset is not None:
                self.reset = reset

    def snapshot(self) -> tuple:
        with self._lock:
            return self.remaining, self.reset

    def wait_time(self, now: float) -> Optional[float]:
        """Seconds until the quota resets, or None if quota is left.

        0 when the reset time is unknown or already past.
        """
        remaining, reset = self.snapshot()
        if remaining is None or remaining >= 1:
            return None
        if reset is None:
            return 0.0
        return max(0.0, reset - now)


class GitHubClient:
    """Thin wrapper over the GitHub v3 REST API.

    Retries connection errors and 5xx responses with exponential backoff, and
    waits out an exhausted rate limit. Anything still failing raises
    SourceFetchError.
    """

    def __init__(self, token: Optional[str] = None, base_url: str = API_URL,
                 max_workers: int = 10, max_retries: int = 3, max_wait: float = 3600,
                 session: Optional[requests.Session] = None,
                 sleep=time.sleep, clock=time.time):
        self.base_url = base_url.rstrip("/")
        self.max_workers = max_workers
        self.max_retries = max_retries
        self.max_wait = max_wait
        self.rate_limit = RateLimit()
        self._sleep = sleep
        self._clock = clock

        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/vnd.github.v3+json"})
        if token:
            self.session.headers["Authorization"] = f"token {token}"
        else:
            logger.info("Using GitHub API without authentication")

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith("http"):
            return endpoint
        return f"{self.base_url}{endpoint}"

    def _request(self, method: str, endpoint: str, params: Optional[dict] = None,
                 json: Optional[dict] = None, target: Optional[str] = None,
                 allow: tuple = ()) -> requests.Response:
        """Make an authenticated request, applying the retry policy.

        Args:
            method: HTTP method
            endpoint: Path below the API root, or an absolute url
            params: Query parameters
            json: Request body
            target: What is being fetched, for error messages
            allow: Non-2xx status codes returned to the caller instead of raised
        """
        url = self._url(endpoint)
        target = target or endpoint
        last_error = None

        for attempt in range(self.max_retries + 1):
            if attempt:
                logger.debug(f"Retry {attempt} for {method} {url}")

            try:
                response = self.session.request(method, url, params=params, json=json, timeout=30)
            except requests.exceptions.RequestException as e:
                last_error = str(e)
                logger.warning(f"{method} {url} failed: {e}")
                self._sleep(2 ** attempt)
                continue

            self.rate_limit.update(response)

            delay = self.rate_limit.wait_time(self._clock())
            if response.status_code in (403, 429) and delay is not None:
                if delay > self.max_wait:
                    raise SourceFetchError(
                        f"rate limited, reset in {delay:.0f}s", target, response.status_code
                    )
                logger.warning(f"Throttled! remaining 0, waiting {delay:.0f}s")
                last_error = "rate limited"
                self._sleep(delay)
                continue

            if response.status_code >= 500:
                last_error = f"GitHub API error: {response.status_code}"
                logger.warning(f"{method} {url}: {last_error}")
                self._sleep(2 ** attempt)
                continue

            if response.ok or response.status_code in allow:
                return response

            raise SourceFetchError(
                f"GitHub API error: {response.status_code} {_error_message(response)}",
                target,
                response.status_code,
            )

        raise SourceFetchError(
            f"giving up after {self.max_retries + 1} attempts: {last_error}", target
        )

    def _get_json(self, endpoint: str, params: Optional[dict] = None,
                  target: Optional[str] = None):
        return self._request("GET", endpoint, params=params, target=target).json()

    def iter_pages(self, endpoint: str, params: Optional[dict] = None,
                   target: Optional[str] = None) -> Iterator[list]:
        """Yield each page of a list endpoint, following `Link: rel="next"`.

        Lazy; every call starts again from the first page.
        """
        params = dict(params or {})
        params.setdefault("per_page", PAGE_SIZE)
        url = endpoint
        page = 0

        while url:
            response = self._request("GET", url, params=params, target=target)
            page += 1
            items = response.json()
            logger.debug(f"{target or endpoint}: page {page} - {len(items)} items received")
            yield items
            url = response.links.get("next", {}).get("url")
            # the next link already carries the query string
            params = None

    def _get_all(self, endpoint: str, params: Optional[dict] = None,
                 target: Optional[str] = None) -> list:
        items = []
        for page in self.iter_pages(endpoint, params, target):
            items.extend(page)
        return items

    def get_authenticated_user(self) -> dict:
        return self._get_json("/user", target="user")

    def list_issues(self, repository: str, state: str = "all", since=None,
                    labels: Optional[str] = None, milestone: Optional[str] = None) -> list:
        """All issues (and pull requests) of a repository."""
        params = {"state": state}
        if since:
            if isinstance(since, (datetime, date)):
                since = since.isoformat()
            params["since"] = since
        if labels:
            params["labels"] = labels
        if milestone:
            params["milestone"] = milestone

        issues = self._get_all(f"/repos/{repository}/issues", params, target=repository)
        logger.info(f"{repository}: fetched {len(issues)} issues")
        return issues

    def get_issue(self, repository: str, number: int) -> dict:
        return self._get_json(
            f"/repos/{repository}/issues/{number}", target=f"{repository}#{number}"
        )

    def list_events(self, repository: str, number: int) -> list:
        return self._get_all(
            f"/repos/{repository}/issues/{number}/events", target=f"{repository}#{number}"
        )

    def is_collaborator(self, repository: str, login: str) -> bool:
        response = self._request(
            "GET", f"/repos/{repository}/collaborators/{login}",
            target=repository, allow=(404,)
        )
        return response.status_code != 404

    def list_labels(self, repository: str) -> list:
        return self._get_all(f"/repos/{repository}/labels", target=repository)

    def create_label(self, repository: str, name: str, color: str) -> dict:
        return self._request(
            "POST", f"/repos/{repository}/labels",
            json={"name": name, "color": color}, target=repository
        ).json()

    def update_label(self, repository: str, name: str, color: str) -> dict:
        return self._request(
            "PATCH", f"/repos/{repository}/labels/{quote(name, safe='')}",
            json={"color": color}, target=repository
        ).json()

    def delete_label(self, repository: str, name: str) -> None:
        self._request(
            "DELETE", f"/repos/{repository}/labels/{quote(name, safe='')}",
            target=repository
        )

    def list_milestones(self, repository: str) -> list:
        return self._get_all(
            f"/repos/{repository}/milestones", {"state": "all"}, target=repository
        )

    def create_milestone(self, repository: str, title: str, due_on: str) -> dict:
        return self._request(
            "POST", f"/repos/{repository}/milestones",
            json={"title": title, "due_on": due_on}, target=repository
        ).json()

    def update_milestone(self, repository: str, number: int, **fields) -> dict:
        return self._request(
            "PATCH", f"/repos/{repository}/milestones/{number}",
            json=fields, target=repository
        ).json()

    def delete_milestone(self, repository: str, number: int) -> None:
        self._request(
            "DELETE", f"/repos/{repository}/milestones/{number}", target=repository
        )

    def _fetch_repository(self, spec: str, filters: dict) -> list:
        """Raw issues for `owner/repo` or the single issue `owner/repo/number`."""
        parts = spec.split("/")
        repository = "/".join(parts[:2])
        if len(parts) > 2:
            payloads = [self.get_issue(repository, int(parts[2]))]
        else:
            payloads = self.list_issues(repository, **filters)
        return [(repository, payload) for payload in payloads]

    def _fetch_events(self, repository: str, payload: dict) -> Issue:
        events = self.list_events(repository, payload["number"])
        return project_issue(repository, payload, events)

    def _run_all(self, fn, jobs: list) -> list:
        """Run fn(*job) for every job on the pool; the first failure aborts all."""
        results = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(fn, *job) for job in jobs]
            try:
                for future in as_completed(futures):
                    results.append(future.result())
            except Exception:
                for future in futures:
                    future.cancel()
                raise
        return results

    def fetch_issues(self, repositories: list, with_events: bool = True,
                     **filters) -> list:
        """Fetch issues from every repository, with their event histories.

        Requests run in parallel up to max_workers; the call returns only
        once every fetch has completed. Issues come back sorted by
        (repository, number).
        """
        pages = self._run_all(self._fetch_repository, [(spec, filters) for spec in repositories])
        raw = [item for page in pages for item in page]
        logger.info(f"*/*: fetched {len(raw)} issues from {len(repositories)} repositories")

        if with_events:
            issues = self._run_all(self._fetch_events, raw)
        else:
            issues = [project_issue(repository, payload) for repository, payload in raw]

        return sorted(issues, key=lambda i: (i.repository, i.number))


def _header_value(response: requests.Response, name: str, convert):
    value = response.headers.get(name)
    if value is None:
        return None
    try:
        return convert(value)
    except ValueError:
        return None


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return ""
    return data.get("message", "") if isinstance(data, dict) else ""
