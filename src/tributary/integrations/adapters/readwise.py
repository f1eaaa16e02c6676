"""Readwise adapter: reading highlights from Kindle, web articles and more."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from tributary.integrations.adapters.base import OAuth2Adapter, SyncContext
from tributary.integrations.config import (
    AccountInfo,
    IntegrationDefinition,
    IntegrationFeatures,
    IntegrationTokens,
    OAuthClientConfig,
)
from tributary.integrations.normalized import (
    ArticleDetails,
    HighlightDetails,
    IngestItemMetadata,
    ProcessingHints,
    StandardIngestItem,
)
from tributary.models.enums import (
    AuthMethod,
    IngestItemType,
    IntegrationCategory,
    IntegrationProvider,
    SyncMethod,
)
from tributary.models.sync import SyncOptions

logger = logging.getLogger(__name__)


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _tag_names(tags: list[dict] | None) -> list[str]:
    return [t["name"] for t in tags or [] if t.get("name")]


class ReadwiseAdapter(OAuth2Adapter):
    """Pulls books and highlights from the Readwise export API.

    Each exported book expands into one ``article`` item plus one
    ``highlight`` item per highlight. Webhook deliveries carry highlights
    only and normalize through the same highlight path, so pushed and
    pulled copies of a highlight hash identically.
    """

    definition = IntegrationDefinition(
        id=IntegrationProvider.READWISE,
        name="Readwise",
        description="Sync your reading highlights from Kindle, web articles, and more.",
        category=IntegrationCategory.KNOWLEDGE_READING,
        auth_method=AuthMethod.OAUTH2,
        sync_method=SyncMethod.HYBRID,
        supported_types=[IngestItemType.HIGHLIGHT, IngestItemType.NOTE, IngestItemType.ARTICLE],
        default_sync_interval=60,
        features=IntegrationFeatures(realtime=True, incremental_sync=True, webhooks=True),
    )
    rate_limit_delay = 0.1

    @property
    def base_url(self) -> str:
        return self.settings.readwise_api_url.rstrip("/")

    def oauth_config(self) -> OAuthClientConfig:
        return OAuthClientConfig(
            client_id=self.settings.readwise_client_id,
            client_secret=self.settings.readwise_client_secret,
            authorization_url=f"{self.base_url}/auth/",
            token_url=f"{self.base_url}/token/",
            redirect_uri=self.redirect_uri(),
        )

    @staticmethod
    def _headers(tokens: IntegrationTokens) -> dict[str, str]:
        return {"Authorization": f"Token {tokens.access_token}"}

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def validate_connection(self, tokens: IntegrationTokens) -> bool:
        async with self._client() as client:
            resp = await client.get(f"{self.base_url}/auth/", headers=self._headers(tokens))
        if resp.status_code in (200, 204):
            return True
        logger.warning("Readwise connection check returned HTTP %s", resp.status_code)
        return False

    async def get_account_info(self, tokens: IntegrationTokens) -> AccountInfo:
        async with self._client() as client:
            resp = await self._request(client, "GET", f"{self.base_url}/auth/", headers=self._headers(tokens))
        data = resp.json() if resp.content else {}
        return AccountInfo(account_email=data.get("email"))

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def sync(self, context: SyncContext, options: SyncOptions) -> list[StandardIngestItem]:
        limit = self.batch_limit(options)
        cursor = options.cursor
        items: list[StandardIngestItem] = []

        async with self._client() as client:
            while True:
                params: dict[str, str] = {}
                if cursor:
                    params["pageCursor"] = cursor
                if options.since is not None:
                    params["updatedAfter"] = options.since.isoformat()

                resp = await self._request(
                    client,
                    "GET",
                    f"{self.base_url}/export/",
                    params=params,
                    headers=self._headers(context.tokens),
                )
                page = resp.json()

                for book in page.get("results", []):
                    items.append(self._normalize_book(book))
                    for highlight in book.get("highlights", []):
                        items.append(self._normalize_highlight(highlight, book))

                cursor = page.get("nextPageCursor")
                if not cursor or len(items) >= limit:
                    break
                await asyncio.sleep(self.rate_limit_delay)

        context.next_cursor = cursor
        logger.info("Pulled %d Readwise items for integration %s", len(items), context.integration_id)
        return items

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def handle_webhook(self, payload: dict, signature: str | None = None) -> list[StandardIngestItem]:
        book = payload.get("book") or {}
        return [self._normalize_highlight(h, h.get("book") or book) for h in payload.get("highlights") or []]

    def webhook_event_type(self, headers, payload: dict) -> str | None:
        if payload.get("event_type"):
            return payload["event_type"]
        return "highlights" if "highlights" in payload else None

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    @staticmethod
    def _normalize_book(book: dict) -> StandardIngestItem:
        title = book.get("readable_title") or book.get("title") or "Untitled"
        author = book.get("author")
        note = book.get("document_note") or None
        updated = _parse_ts(book.get("updated")) or _parse_ts(book.get("last_highlight_at"))
        return StandardIngestItem(
            source_provider=IntegrationProvider.READWISE,
            source_id=f"book_{book['user_book_id']}",
            source_url=book.get("readwise_url") or book.get("source_url"),
            type=IngestItemType.ARTICLE,
            title=title,
            content=note or (f"{book.get('title') or title} by {author}" if author else title),
            summary=note,
            raw_content={k: v for k, v in book.items() if k != "highlights"},
            metadata=IngestItemMetadata(
                timestamp=updated or datetime.now(timezone.utc),
                updated_at=updated,
                author=author,
                tags=_tag_names(book.get("book_tags")),
                details=ArticleDetails(
                    category=book.get("category"),
                    source=book.get("source"),
                    num_highlights=len(book.get("highlights", [])),
                    cover_image_url=book.get("cover_image_url"),
                ),
            ),
        )

    @staticmethod
    def _normalize_highlight(highlight: dict, book: dict) -> StandardIngestItem:
        content = highlight.get("text", "")
        if highlight.get("note"):
            content += f"\n\n**Note:** {highlight['note']}"

        book_title = book.get("title") or highlight.get("book_title")
        book_id = book.get("user_book_id") or highlight.get("book_id")
        highlighted_at = _parse_ts(highlight.get("highlighted_at"))
        updated = _parse_ts(highlight.get("updated"))

        return StandardIngestItem(
            source_provider=IntegrationProvider.READWISE,
            source_id=f"highlight_{highlight['id']}",
            source_url=highlight.get("url") or book.get("readwise_url"),
            type=IngestItemType.HIGHLIGHT,
            title=f'Highlight from "{book_title}"' if book_title else "Readwise highlight",
            content=content,
            raw_content=highlight,
            metadata=IngestItemMetadata(
                timestamp=updated or highlighted_at or datetime.now(timezone.utc),
                created_at=highlighted_at,
                updated_at=updated,
                author=book.get("author"),
                tags=_tag_names(highlight.get("tags")),
                parent_id=f"book_{book_id}" if book_id else None,
                details=HighlightDetails(
                    book_id=str(book_id) if book_id else None,
                    book_title=book_title,
                    location=highlight.get("location"),
                    location_type=highlight.get("location_type"),
                    color=highlight.get("color") or None,
                    note=highlight.get("note") or None,
                ),
            ),
            processing_hints=ProcessingHints(extract_memories=True),
        )
