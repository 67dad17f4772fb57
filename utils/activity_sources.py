#!/usr/bin/env python3
"""Activity source adapters for GitHub, Linear and Slack.

Each adapter exposes ``fetch(date_range)`` returning raw activity records for
one source role (code, issues, chat). "No activity" is an empty list; transport
and auth failures raise ``SourceFetchError`` with a typed ``code`` so the
generator can isolate them per source.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from configs.config import Config
from utils.activity_models import ChatMessage, CodeChange, DateRange, IssueUpdate

# Set up logging
logger = logging.getLogger(__name__)


class SourceFetchError(Exception):
    """Raised when an activity source cannot be read."""

    def __init__(self, message: str, code: str = "UNKNOWN") -> None:
        super().__init__(message)
        self.code = code


class ActivitySource(ABC):
    """Port for a source of raw activity records."""

    role: str = ""

    @abstractmethod
    def fetch(self, date_range: DateRange) -> Sequence[Any]:
        """Return records for the date range; raise SourceFetchError on failure."""


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _map_status_to_code(status_code: int) -> str:
    if status_code in (401, 403):
        return "UNAUTHORIZED"
    if status_code == 404:
        return "NOT_FOUND"
    if status_code == 429:
        return "RATE_LIMIT"
    return "UNKNOWN"


class _HttpActivitySource(ActivitySource):
    """Shared session setup and response checking for HTTP-backed sources."""

    user_agent = "hybrid-release-notes/1.0"

    def __init__(self, auth_header: str, timeout_s: Optional[int] = None, session: Optional[requests.Session] = None):
        self.timeout_s = timeout_s or Config.HTTP_TIMEOUT_S
        if session is not None:
            self.session = session
            return

        self.session = requests.Session()
        self.session.headers.update({
            'Authorization': auth_header,
            'User-Agent': self.user_agent
        })

        # Configure retries for transient failures
        retry_strategy = Retry(
            total=3,
            status_forcelist=[429, 500, 502, 503, 504],
            backoff_factor=1,
            allowed_methods=["HEAD", "GET", "OPTIONS", "POST"],
            # Hand the last response back so its status maps to an error code
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("https://", adapter)

    def _request(self, method: str, url: str, what: str, **kwargs) -> Any:
        try:
            response = getattr(self.session, method)(url, timeout=self.timeout_s, **kwargs)
        except requests.Timeout as e:
            raise SourceFetchError(f"Timeout while fetching {what}: {e}", code="TIMEOUT")
        except requests.RequestException as e:
            raise SourceFetchError(f"Network error while fetching {what}: {e}", code="NETWORK")

        if response.status_code != 200:
            raise SourceFetchError(
                f"{self.role} API error for {what}: HTTP {response.status_code}",
                code=_map_status_to_code(response.status_code),
            )
        return response.json()


class GitHubActivitySource(_HttpActivitySource):
    """Commits and pull requests from the GitHub REST API."""

    role = "code"
    base_url = "https://api.github.com"

    def __init__(self, token: str, repositories: Sequence[str] = (), timeout_s: Optional[int] = None,
                 session: Optional[requests.Session] = None):
        """Initialize the GitHub source.

        Args:
            token: GitHub Personal Access Token
            repositories: Repositories in 'owner/name' format
            timeout_s: Request timeout in seconds (defaults to Config.HTTP_TIMEOUT_S)
            session: Optional pre-configured session
        """
        if not token and session is None:
            raise SourceFetchError("GitHub token is required (GITHUB_TOKEN or GITHUB_PAT env var)", code="UNAUTHORIZED")
        super().__init__(f"token {token}", timeout_s, session)
        if session is None:
            self.session.headers['Accept'] = 'application/vnd.github.v3+json'
        self.repositories = [r for r in repositories if "/" in r]
        logger.info(f"GitHub activity source initialized for {len(self.repositories)} repositories")

    def fetch(self, date_range: DateRange) -> List[CodeChange]:
        if not self.repositories:
            logger.warning("No GitHub repositories configured; code activity will be empty")
            return []

        changes: List[CodeChange] = []
        for full_name in self.repositories:
            commits = self._list_commits(full_name, date_range)
            pulls = self._list_pull_requests(full_name, date_range)
            logger.info(f"GitHub {full_name}: {len(commits)} commits, {len(pulls)} PRs in date range")
            changes.extend(commits)
            changes.extend(pulls)
        return changes

    def _list_commits(self, full_name: str, date_range: DateRange) -> List[CodeChange]:
        params = {
            "since": date_range.start_datetime().isoformat(),
            "until": date_range.end_datetime().isoformat(),
            "per_page": 50,
        }
        data = self._request("get", f"{self.base_url}/repos/{full_name}/commits", f"commits of {full_name}", params=params)
        out = []
        for item in data or []:
            commit = item.get("commit") or {}
            message = commit.get("message") or ""
            out.append(CodeChange(
                id=item.get("sha") or "",
                change_type="commit",
                title=message.split("\n")[0],
                body=message,
                repo=full_name,
                timestamp=_parse_ts((commit.get("author") or {}).get("date")),
            ))
        return out

    def _list_pull_requests(self, full_name: str, date_range: DateRange) -> List[CodeChange]:
        # The pulls endpoint has no date filter; take the most recently updated and filter locally.
        params = {"state": "all", "sort": "updated", "direction": "desc", "per_page": 50}
        data = self._request("get", f"{self.base_url}/repos/{full_name}/pulls", f"pull requests of {full_name}", params=params)
        out = []
        for pr in data or []:
            updated_at = _parse_ts(pr.get("updated_at"))
            if not date_range.contains(updated_at):
                continue
            out.append(CodeChange(
                id=str(pr.get("number") or pr.get("id") or ""),
                change_type="pull_request",
                title=pr.get("title"),
                body=pr.get("body"),
                repo=full_name,
                additions=pr.get("additions"),
                deletions=pr.get("deletions"),
                merged=bool(pr.get("merged_at")),
                labels=[label.get("name", "") for label in pr.get("labels") or []],
                timestamp=updated_at,
            ))
        return out


_LINEAR_ISSUES_QUERY = """
query GetIssues($filter: IssueFilter) {
  issues(filter: $filter, first: 50) {
    nodes {
      id
      identifier
      title
      description
      state { name type }
      updatedAt
      priority
      labels { nodes { name } }
    }
  }
}
"""


class LinearActivitySource(_HttpActivitySource):
    """Issues updated in the range, from the Linear GraphQL API."""

    role = "issues"
    endpoint = "https://api.linear.app/graphql"

    def __init__(self, api_key: str, team_members: Sequence[str] = (), timeout_s: Optional[int] = None,
                 session: Optional[requests.Session] = None):
        if not api_key and session is None:
            raise SourceFetchError("Linear API key is required (LINEAR_API_KEY env var)", code="UNAUTHORIZED")
        super().__init__(api_key, timeout_s, session)
        self.team_members = list(team_members)

    def fetch(self, date_range: DateRange) -> List[IssueUpdate]:
        issue_filter: Dict[str, Any] = {
            "updatedAt": {
                "gte": date_range.start_datetime().isoformat(),
                "lte": date_range.end_datetime().isoformat(),
            }
        }
        if self.team_members:
            issue_filter["assignee"] = {"email": {"in": self.team_members}}

        payload = {"query": _LINEAR_ISSUES_QUERY, "variables": {"filter": issue_filter}}
        data = self._request("post", self.endpoint, "Linear issues", json=payload)
        if data.get("errors"):
            raise SourceFetchError(f"Linear API error: {data['errors'][0].get('message', 'unknown')}", code="UNKNOWN")

        nodes = (((data.get("data") or {}).get("issues") or {}).get("nodes")) or []
        logger.info(f"Linear: retrieved {len(nodes)} issues")
        return [
            IssueUpdate(
                id=node.get("identifier") or node.get("id"),
                title=node.get("title"),
                description=node.get("description"),
                state=(node.get("state") or {}).get("name"),
                state_type=(node.get("state") or {}).get("type"),
                priority=node.get("priority"),
                labels=[label.get("name", "") for label in ((node.get("labels") or {}).get("nodes") or [])],
                timestamp=_parse_ts(node.get("updatedAt")),
            )
            for node in nodes
        ]


_DEFAULT_CHANNEL_HINTS = ("dev", "engineering", "team", "general", "standup")


class SlackActivitySource(_HttpActivitySource):
    """Messages from team channels through the Slack Web API."""

    role = "chat"
    base_url = "https://slack.com/api"
    max_channels = 5

    def __init__(self, bot_token: str, channels: Sequence[str] = (), timeout_s: Optional[int] = None,
                 session: Optional[requests.Session] = None):
        if not bot_token and session is None:
            raise SourceFetchError("Slack bot token is required (SLACK_BOT_TOKEN env var)", code="UNAUTHORIZED")
        super().__init__(f"Bearer {bot_token}", timeout_s, session)
        self.channels = list(channels)

    def _call(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        data = self._request("get", f"{self.base_url}/{method}", f"Slack {method}", params=params)
        if not data.get("ok"):
            error = data.get("error", "unknown")
            code = "UNAUTHORIZED" if error in ("invalid_auth", "not_authed", "token_revoked") else "UNKNOWN"
            if error == "ratelimited":
                code = "RATE_LIMIT"
            raise SourceFetchError(f"Slack API error: {error}", code=code)
        return data

    def fetch(self, date_range: DateRange) -> List[ChatMessage]:
        listing = self._call("conversations.list", {
            "types": "public_channel,private_channel",
            "exclude_archived": "true",
            "limit": 100,
        })
        channels = listing.get("channels") or []
        if self.channels:
            targets = [ch for ch in channels if ch.get("name") in self.channels]
        else:
            targets = [ch for ch in channels if any(h in (ch.get("name") or "") for h in _DEFAULT_CHANNEL_HINTS)]

        oldest = int(date_range.start_datetime().timestamp())
        latest = int(date_range.end_datetime().timestamp())
        messages: List[ChatMessage] = []
        for channel in targets[: self.max_channels]:
            name = channel.get("name") or ""
            try:
                history = self._call("conversations.history", {
                    "channel": channel.get("id"),
                    "oldest": oldest,
                    "latest": latest,
                    "limit": 100,
                })
            except SourceFetchError as e:
                if e.code == "UNAUTHORIZED":
                    raise
                logger.warning(f"Failed to fetch messages from channel {name}: {e}")
                continue
            for msg in history.get("messages") or []:
                ts = msg.get("ts") or ""
                messages.append(ChatMessage(
                    id=ts,
                    text=msg.get("text"),
                    channel=name,
                    timestamp=datetime.fromtimestamp(float(ts), tz=timezone.utc) if ts else None,
                ))
        logger.info(f"Slack: retrieved {len(messages)} messages from {min(len(targets), self.max_channels)} channels")
        return messages
