"""
Evidence Fetcher - best-effort retrieval of public work artifacts.

Contract: `fetch(ref) -> text | None`. It never raises for ordinary
failures (network, not-found, malformed payloads): absence of evidence is
recorded as a signal, not an error.
"""

import base64
import re
from typing import Any, Optional, Protocol

import httpx
import structlog

from humiq.core.config import settings

logger = structlog.get_logger()


GITHUB_PROFILE_PATTERN = re.compile(r"github\.com/([A-Za-z0-9](?:[A-Za-z0-9-]{0,38}))/?$")

MIN_README_CHARS = 100
REPO_LISTING_SIZE = 10


class EvidenceFetcher(Protocol):
    """Contract of the evidence collaborator."""

    async def fetch(self, evidence_source_ref: str) -> Optional[str]: ...


def parse_github_username(ref: str) -> Optional[str]:
    """Username of a GitHub profile URL, None for anything else."""
    match = GITHUB_PROFILE_PATTERN.search(ref.strip())
    return match.group(1) if match else None


def clean_readme(content: str, max_chars: int) -> str:
    """Strip README markup down to prose."""
    cleaned = re.sub(r"!\[.*?\]\(.*?\)", "", content)                # images
    cleaned = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", cleaned)        # links -> text
    cleaned = re.sub(r"```[\s\S]*?```", "[code block]", cleaned)      # fenced code
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()[:max_chars]


class GitHubEvidenceFetcher:
    """
    Builds a plain-text evidence dump from a GitHub profile.

    Lists recently updated public repositories, keeps non-forks that have
    a description or stars, and collects their cleaned READMEs plus a
    metadata block for repositories without one.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        token: Optional[str] = None,
        max_repos: Optional[int] = None,
        readme_max_chars: Optional[int] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = (api_url or settings.GITHUB_API_URL).rstrip("/")
        self.token = token if token is not None else settings.GITHUB_TOKEN
        self.max_repos = max_repos or settings.EVIDENCE_MAX_REPOS
        self.readme_max_chars = readme_max_chars or settings.EVIDENCE_README_MAX_CHARS
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout or settings.EVIDENCE_FETCH_TIMEOUT_SECONDS
        )

    @property
    def headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "HumIQ-WorkSession",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def fetch(self, evidence_source_ref: str) -> Optional[str]:
        username = parse_github_username(evidence_source_ref)
        if username is None:
            logger.info("evidence_source_unsupported", ref=evidence_source_ref)
            return None

        try:
            repos = await self._list_repos(username)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("evidence_fetch_failed", username=username, error=str(e))
            return None

        relevant = [
            repo for repo in repos
            if isinstance(repo, dict)
            and not repo.get("fork")
            and (repo.get("description") or (repo.get("stargazers_count") or 0) > 0)
        ][: self.max_repos]

        blocks: list[str] = []
        for repo in relevant:
            readme = await self._fetch_readme(repo.get("full_name", ""))
            if readme and len(readme) > MIN_README_CHARS:
                blocks.append(
                    f"SOURCE: GitHub README - {repo.get('name')}\n"
                    f"Repository: {repo.get('full_name')}\n"
                    f"Stars: {repo.get('stargazers_count', 0)} | "
                    f"Language: {repo.get('language') or 'Not specified'}\n"
                    f"Description: {repo.get('description') or 'No description'}\n\n"
                    f"TEXT:\n{readme}"
                )

        for repo in relevant:
            if not any(str(repo.get("name")) in block for block in blocks):
                blocks.append(
                    f"SOURCE: GitHub Repository - {repo.get('name')}\n"
                    f"Language: {repo.get('language') or 'Not specified'}\n"
                    f"Stars: {repo.get('stargazers_count', 0)} | Forks: {repo.get('forks_count', 0)}\n"
                    f"Description: {repo.get('description') or 'No description'}"
                )

        logger.info("evidence_fetched", username=username, blocks=len(blocks))
        return "\n\n---\n\n".join(blocks) or None

    async def _list_repos(self, username: str) -> list[Any]:
        response = await self._client.get(
            f"{self.api_url}/users/{username}/repos",
            params={"sort": "updated", "per_page": REPO_LISTING_SIZE},
            headers=self.headers,
        )
        response.raise_for_status()
        repos = response.json()
        if not isinstance(repos, list):
            raise ValueError("Unexpected repository listing payload")
        return repos

    async def _fetch_readme(self, full_name: str) -> Optional[str]:
        """Cleaned README of one repository; None when unavailable."""
        try:
            response = await self._client.get(
                f"{self.api_url}/repos/{full_name}/readme",
                headers=self.headers,
            )
            if response.status_code != 200:
                return None
            encoded = response.json().get("content", "")
            content = base64.b64decode(encoded.replace("\n", "")).decode("utf-8", errors="replace")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.debug("readme_fetch_failed", repo=full_name, error=str(e))
            return None
        return clean_readme(content, self.readme_max_chars)

    async def aclose(self) -> None:
        await self._client.aclose()
