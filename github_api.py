#!/usr/bin/env python3
"""
Thin GitHub REST API client used by automator.py and pr_creator.py.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import requests

from config import API_TIMEOUT, GITHUB_API_URL

logger = logging.getLogger(__name__)


class GitHubError(Exception):
    """A GitHub API request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GitHubClient:
    """Token-authenticated access to the handful of endpoints the tools need."""

    def __init__(self, token: str, api_url: str = GITHUB_API_URL, timeout: int = API_TIMEOUT):
        self.api_url = api_url.rstrip("/") + "/"
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github+json",
        })

    def _request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        url = urljoin(self.api_url, endpoint.lstrip("/"))
        logger.debug(f"{method} {url}")
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise GitHubError(f"{method} {endpoint} failed: {e}") from e

        if not response.ok:
            raise GitHubError(
                f"{method} {endpoint} returned {response.status_code}: {response.text.strip()[:200]}",
                status_code=response.status_code,
            )
        return response

    def api_get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Make GET request and return the decoded JSON body."""
        return self._request("GET", endpoint, params=params).json()

    def api_post(self, endpoint: str, data: Optional[Dict[str, Any]] = None) -> Any:
        """Make POST request and return the decoded JSON body (None when empty)."""
        response = self._request("POST", endpoint, json=data)
        return response.json() if response.content else None

    def api_patch(self, endpoint: str, data: Dict[str, Any]) -> Any:
        """Make PATCH request and return the decoded JSON body."""
        return self._request("PATCH", endpoint, json=data).json()

    # ------------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------------

    def get_user(self) -> Dict[str, Any]:
        """Return the authenticated user (login, email, ...)."""
        return self.api_get("user")

    def fork(self, org: str, repo: str) -> bool:
        """
        Fork org/repo into the authenticated user's account.

        Forking an already forked repository is a no-op on GitHub's side, so
        failures are logged and reported as False instead of raised.
        """
        try:
            # the response body is not needed, so it is never decoded
            self._request("POST", f"repos/{org}/{repo}/forks")
            return True
        except GitHubError as e:
            logger.warning(f"Fork of {org}/{repo} did not succeed, continuing: {e}")
            return False

    def add_labels(self, org: str, repo: str, number: str, labels: List[str]) -> None:
        """Add labels to an issue or pull request."""
        self.api_post(f"repos/{org}/{repo}/issues/{number}/labels", {"labels": labels})

    def search_pulls(self, org: str, repo: str, text: str, author: Optional[str] = None) -> List[Dict[str, Any]]:
        """Return open pull requests in org/repo whose title mentions `text`, optionally by `author`."""
        query = f'repo:{org}/{repo} is:pr is:open in:title "{text}"'
        if author:
            query += f" author:{author}"
        return self.api_get("search/issues", params={"q": query}).get("items", [])

    def create_pull(self, org: str, repo: str, title: str, body: str, head: str, base: str) -> Dict[str, Any]:
        """Open a pull request from `head` (user:ref) into `base`."""
        return self.api_post(f"repos/{org}/{repo}/pulls", {
            "title": title,
            "body": body,
            "head": head,
            "base": base,
        })

    def update_pull(self, org: str, repo: str, number: int, title: str, body: str) -> Dict[str, Any]:
        """Replace the title and body of an existing pull request."""
        return self.api_patch(f"repos/{org}/{repo}/pulls/{number}", {"title": title, "body": body})
