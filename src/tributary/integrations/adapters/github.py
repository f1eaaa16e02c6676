"""GitHub adapter: repository issues, pull requests, commits and releases.

OAuth tokens issued by GitHub do not expire, so refresh is unsupported.
Pull sync walks the repositories listed in the integration metadata under
``selected_repositories``; webhook deliveries are routed by the same list.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from tributary.integrations.adapters.base import OAuth2Adapter, SyncContext
from tributary.integrations.config import (
    AccountInfo,
    IntegrationDefinition,
    IntegrationFeatures,
    IntegrationTokens,
    OAuthClientConfig,
)
from tributary.integrations.normalized import (
    CodeEventDetails,
    IngestItemMetadata,
    ProcessingHints,
    StandardIngestItem,
)
from tributary.models.enums import (
    AuthMethod,
    IngestItemType,
    IntegrationCategory,
    IntegrationProvider,
    Priority,
    SyncMethod,
)
from tributary.models.sync import SyncOptions

logger = logging.getLogger(__name__)


@dataclass
class _PagePosition:
    """Where an unfinished walk over the selected repositories continues."""

    repo: str | None
    page: int
    per_page: int

    @classmethod
    def parse(cls, cursor: str | None, per_page: int) -> _PagePosition:
        if not cursor:
            return cls(None, 1, per_page)
        try:
            data = json.loads(cursor)
            return cls(data["repo"], max(1, int(data["page"])), max(1, int(data["per_page"])))
        except (ValueError, TypeError, KeyError):
            logger.warning("Ignoring unreadable GitHub cursor %r", cursor)
            return cls(None, 1, per_page)

    def dump(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)


WEBHOOK_EVENTS = frozenset({
    "push",
    "pull_request",
    "issues",
    "release",
    "issue_comment",
    "pull_request_review_comment",
})
_TRACKED_ACTIONS = {"opened", "closed", "reopened", "edited"}


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _label_names(labels: list[dict] | None) -> list[str]:
    return [label["name"] for label in labels or [] if label.get("name")]


class GitHubAdapter(OAuth2Adapter):
    definition = IntegrationDefinition(
        id=IntegrationProvider.GITHUB,
        name="GitHub",
        description="Monitor repository activity, commits, PRs, and releases.",
        category=IntegrationCategory.TASKS_PROJECTS,
        auth_method=AuthMethod.OAUTH2,
        scopes=["repo", "read:user"],
        sync_method=SyncMethod.HYBRID,
        supported_types=[
            IngestItemType.ISSUE,
            IngestItemType.NOTE,
            IngestItemType.COMMENT,
            IngestItemType.DOCUMENT,
        ],
        default_sync_interval=15,
        features=IntegrationFeatures(realtime=True, incremental_sync=True, webhooks=True),
    )
    webhook_events = WEBHOOK_EVENTS
    webhook_signature_header = "x-hub-signature-256"
    default_limit = 20

    @property
    def api_url(self) -> str:
        return self.settings.github_api_url.rstrip("/")

    def oauth_config(self) -> OAuthClientConfig:
        return OAuthClientConfig(
            client_id=self.settings.github_client_id,
            client_secret=self.settings.github_client_secret,
            authorization_url="https://github.com/login/oauth/authorize",
            token_url="https://github.com/login/oauth/access_token",
            redirect_uri=self.redirect_uri(),
            scopes=list(self.definition.scopes),
        )

    @staticmethod
    def _headers(tokens: IntegrationTokens) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {tokens.access_token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def validate_connection(self, tokens: IntegrationTokens) -> bool:
        async with self._client() as client:
            resp = await client.get(f"{self.api_url}/user", headers=self._headers(tokens))
        return resp.status_code == 200

    async def get_account_info(self, tokens: IntegrationTokens) -> AccountInfo:
        async with self._client() as client:
            resp = await self._request(client, "GET", f"{self.api_url}/user", headers=self._headers(tokens))
        user = resp.json()
        return AccountInfo(
            account_id=str(user.get("id")),
            account_name=user.get("name") or user.get("login"),
            account_email=user.get("email"),
            extra={"login": user.get("login"), "avatar_url": user.get("avatar_url")},
        )

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def sync(self, context: SyncContext, options: SyncOptions) -> list[StandardIngestItem]:
        """Walk the selected repositories in order, page by page.

        The batch stops at a page boundary once ``limit`` is reached and the
        cursor records the repository and page to continue from, so later
        repositories are listed under the same ``since`` as earlier ones.
        """
        repos: list[str] = context.metadata.get("selected_repositories") or []
        context.next_cursor = None
        if not repos:
            logger.info("No GitHub repositories selected for integration %s", context.integration_id)
            return []

        limit = self.batch_limit(options)
        position = _PagePosition.parse(options.cursor, per_page=min(limit, 100))
        start = repos.index(position.repo) if position.repo in repos else 0
        page = position.page if position.repo in repos else 1
        items: list[StandardIngestItem] = []

        async with self._client() as client:
            for repo in repos[start:]:
                while True:
                    if len(items) >= limit:
                        context.next_cursor = _PagePosition(repo, page, position.per_page).dump()
                        logger.info("Pulled %d GitHub issues, continuing at %s page %d", len(items), repo, page)
                        return items
                    issues = await self._list_issues(client, context, repo, page, position.per_page, options)
                    # The issues endpoint also lists pull requests.
                    items.extend(self._normalize_issue(i, repo) for i in issues if "pull_request" not in i)
                    if len(issues) < position.per_page:
                        break
                    page += 1
                page = 1

        logger.info("Pulled %d GitHub issues across %d repositories", len(items), len(repos) - start)
        return items

    async def _list_issues(
        self,
        client: httpx.AsyncClient,
        context: SyncContext,
        repo: str,
        page: int,
        per_page: int,
        options: SyncOptions,
    ) -> list[dict]:
        params = {
            "state": "all",
            "sort": "updated",
            "direction": "asc",
            "per_page": str(per_page),
            "page": str(page),
        }
        if options.since is not None:
            params["since"] = options.since.isoformat()
        resp = await self._request(
            client,
            "GET",
            f"{self.api_url}/repos/{repo}/issues",
            params=params,
            headers=self._headers(context.tokens),
        )
        return resp.json()

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def webhook_event_type(self, headers: Mapping[str, str], payload: dict) -> str | None:
        return headers.get("x-github-event")

    def webhook_matches(self, metadata: dict[str, Any], payload: dict) -> bool:
        selected = metadata.get("selected_repositories") or []
        if not selected:
            return True
        repo = (payload.get("repository") or {}).get("full_name")
        return repo in selected

    async def handle_webhook(self, payload: dict, signature: str | None = None) -> list[StandardIngestItem]:
        repo = (payload.get("repository") or {}).get("full_name", "")
        action = payload.get("action")

        if "commits" in payload:
            branch = (payload.get("ref") or "").removeprefix("refs/heads/")
            return [self._normalize_push_commit(c, repo, branch) for c in payload["commits"]]
        if "pull_request" in payload and "comment" not in payload:
            if action in _TRACKED_ACTIONS:
                return [self._normalize_pull_request(payload["pull_request"], repo)]
            return []
        if "comment" in payload:
            if action in ("created", "edited"):
                return [self._normalize_comment(payload, repo)]
            return []
        if "issue" in payload:
            if action in _TRACKED_ACTIONS:
                return [self._normalize_issue(payload["issue"], repo)]
            return []
        if "release" in payload and action == "published":
            return [self._normalize_release(payload["release"], repo)]
        return []

    async def register_webhook(self, context: SyncContext, url: str, secret: str) -> dict[str, Any]:
        repos: list[str] = context.metadata.get("selected_repositories") or []
        hook_ids: list[str] = []
        async with self._client() as client:
            for repo in repos:
                resp = await self._request(
                    client,
                    "POST",
                    f"{self.api_url}/repos/{repo}/hooks",
                    headers=self._headers(context.tokens),
                    json={
                        "name": "web",
                        "active": True,
                        "events": sorted(WEBHOOK_EVENTS),
                        "config": {
                            "url": url,
                            "content_type": "json",
                            "secret": secret,
                            "insecure_ssl": "0",
                        },
                    },
                )
                hook_ids.append(f"{repo}:{resp.json()['id']}")
        logger.info("Registered GitHub webhooks on %d repositories", len(hook_ids))
        return {"webhook_id": ",".join(hook_ids), "events": sorted(WEBHOOK_EVENTS)}

    async def unregister_webhook(self, context: SyncContext, webhook_id: str) -> None:
        async with self._client() as client:
            for mapping in filter(None, webhook_id.split(",")):
                repo, _, hook_id = mapping.rpartition(":")
                if not repo or not hook_id:
                    continue
                await self._request(
                    client,
                    "DELETE",
                    f"{self.api_url}/repos/{repo}/hooks/{hook_id}",
                    headers=self._headers(context.tokens),
                )

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    @staticmethod
    def _normalize_issue(issue: dict, repo: str) -> StandardIngestItem:
        content = f"**{issue['title']}**\n\n"
        if issue.get("body"):
            content += f"{issue['body']}\n\n"
        content += f"**Status:** {issue['state']}"
        assignees = [a["login"] for a in issue.get("assignees") or []]
        if assignees:
            content += f"\n**Assignees:** {', '.join(assignees)}"

        updated = _parse_ts(issue.get("updated_at"))
        return StandardIngestItem(
            source_provider=IntegrationProvider.GITHUB,
            source_id=f"issue_{issue['id']}",
            source_url=issue.get("html_url"),
            type=IngestItemType.ISSUE,
            title=f"Issue #{issue['number']}: {issue['title']}",
            content=content,
            raw_content=issue,
            metadata=IngestItemMetadata(
                timestamp=updated or datetime.now(timezone.utc),
                created_at=_parse_ts(issue.get("created_at")),
                updated_at=updated,
                author=(issue.get("user") or {}).get("login"),
                tags=_label_names(issue.get("labels")),
                details=CodeEventDetails(
                    repository=repo, event="issues", number=issue["number"], state=issue["state"]
                ),
            ),
            processing_hints=ProcessingHints(
                extract_tasks=issue["state"] == "open",
                priority=Priority.MEDIUM,
            ),
        )

    @staticmethod
    def _normalize_pull_request(pr: dict, repo: str) -> StandardIngestItem:
        content = f"**{pr['title']}**\n\n"
        if pr.get("body"):
            content += f"{pr['body']}\n\n"
        content += f"**Status:** {pr['state']}"
        if pr.get("merged"):
            content += " (merged)"
        head = (pr.get("head") or {}).get("ref")
        base = (pr.get("base") or {}).get("ref")
        if head and base:
            content += f"\n**Branch:** {head} -> {base}"

        updated = _parse_ts(pr.get("updated_at"))
        return StandardIngestItem(
            source_provider=IntegrationProvider.GITHUB,
            source_id=f"pr_{pr['id']}",
            source_url=pr.get("html_url"),
            type=IngestItemType.ISSUE,
            title=f"PR #{pr['number']}: {pr['title']}",
            content=content,
            raw_content=pr,
            metadata=IngestItemMetadata(
                timestamp=updated or datetime.now(timezone.utc),
                created_at=_parse_ts(pr.get("created_at")),
                updated_at=updated,
                author=(pr.get("user") or {}).get("login"),
                tags=_label_names(pr.get("labels")),
                details=CodeEventDetails(
                    repository=repo, event="pull_request", number=pr["number"], state=pr["state"], ref=head
                ),
            ),
            processing_hints=ProcessingHints(
                extract_tasks=pr["state"] == "open" and not pr.get("merged"),
                priority=Priority.MEDIUM,
            ),
        )

    @staticmethod
    def _normalize_push_commit(commit: dict, repo: str, branch: str) -> StandardIngestItem:
        first_line = commit["message"].split("\n", 1)[0]
        if len(first_line) > 72:
            first_line = first_line[:72] + "..."
        content = f"**Repository:** {repo}\n\n{commit['message']}\n\n"
        for label, key in (("Added", "added"), ("Modified", "modified"), ("Removed", "removed")):
            if commit.get(key):
                content += f"**{label}:** {len(commit[key])} files\n"

        author = commit.get("author") or {}
        return StandardIngestItem(
            source_provider=IntegrationProvider.GITHUB,
            source_id=f"commit_{commit['id']}",
            source_url=commit.get("url"),
            type=IngestItemType.NOTE,
            title=f"Commit: {first_line}",
            content=content.rstrip(),
            raw_content=commit,
            metadata=IngestItemMetadata(
                timestamp=_parse_ts(commit.get("timestamp")) or datetime.now(timezone.utc),
                author=author.get("name"),
                author_email=author.get("email"),
                details=CodeEventDetails(repository=repo, event="push", ref=branch),
            ),
        )

    @staticmethod
    def _normalize_comment(payload: dict, repo: str) -> StandardIngestItem:
        comment = payload["comment"]
        parent = payload.get("issue") or payload.get("pull_request") or {}
        updated = _parse_ts(comment.get("updated_at"))
        return StandardIngestItem(
            source_provider=IntegrationProvider.GITHUB,
            source_id=f"comment_{comment['id']}",
            source_url=comment.get("html_url"),
            type=IngestItemType.COMMENT,
            title=f"Comment on #{parent.get('number')}: {parent.get('title', '')}".rstrip(": "),
            content=comment.get("body") or "",
            raw_content=comment,
            metadata=IngestItemMetadata(
                timestamp=updated or datetime.now(timezone.utc),
                created_at=_parse_ts(comment.get("created_at")),
                updated_at=updated,
                author=(comment.get("user") or {}).get("login"),
                parent_id=f"issue_{parent['id']}" if parent.get("id") else None,
                details=CodeEventDetails(
                    repository=repo, event="comment", action=payload.get("action"), number=parent.get("number")
                ),
            ),
        )

    @staticmethod
    def _normalize_release(release: dict, repo: str) -> StandardIngestItem:
        name = release.get("name") or release["tag_name"]
        content = f"**{name}**\n\n{release.get('body') or ''}".rstrip()
        if release.get("prerelease"):
            content += "\n\n*Pre-release*"
        published = _parse_ts(release.get("published_at"))
        return StandardIngestItem(
            source_provider=IntegrationProvider.GITHUB,
            source_id=f"release_{release['id']}",
            source_url=release.get("html_url"),
            type=IngestItemType.DOCUMENT,
            title=f"Release {name} ({repo})",
            content=content,
            raw_content=release,
            metadata=IngestItemMetadata(
                timestamp=published or datetime.now(timezone.utc),
                author=(release.get("author") or {}).get("login"),
                tags=["release"],
                details=CodeEventDetails(repository=repo, event="release", ref=release["tag_name"]),
            ),
        )
