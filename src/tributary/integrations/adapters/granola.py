"""Granola adapter: AI meeting notes, pulled on a short polling interval."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from tributary.integrations.adapters.base import ApiKeyAdapter, SyncContext
from tributary.integrations.config import (
    AccountInfo,
    IntegrationDefinition,
    IntegrationFeatures,
    IntegrationTokens,
)
from tributary.integrations.normalized import (
    IngestItemMetadata,
    MeetingDetails,
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

_TRANSCRIPT_LIMIT = 2000
_PAGE_SIZE = 20


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class GranolaAdapter(ApiKeyAdapter):
    definition = IntegrationDefinition(
        id=IntegrationProvider.GRANOLA,
        name="Granola",
        description="AI-powered meeting notes. Automatically capture and summarize your meetings.",
        category=IntegrationCategory.MEETINGS_NOTES,
        auth_method=AuthMethod.API_KEY,
        sync_method=SyncMethod.PULL,
        supported_types=[IngestItemType.MEETING, IngestItemType.NOTE],
        default_sync_interval=5,
        features=IntegrationFeatures(incremental_sync=True),
    )
    rate_limit_delay = 0.1
    default_limit = 50

    @property
    def base_url(self) -> str:
        return self.settings.granola_api_url.rstrip("/")

    @staticmethod
    def _headers(tokens: IntegrationTokens) -> dict[str, str]:
        return {"Authorization": f"Bearer {tokens.access_token}", "Content-Type": "application/json"}

    async def validate_connection(self, tokens: IntegrationTokens) -> bool:
        async with self._client() as client:
            resp = await client.get(f"{self.base_url}/user", headers=self._headers(tokens))
        return resp.status_code == 200

    async def get_account_info(self, tokens: IntegrationTokens) -> AccountInfo:
        async with self._client() as client:
            resp = await self._request(client, "GET", f"{self.base_url}/user", headers=self._headers(tokens))
        data = resp.json()
        return AccountInfo(
            account_id=data.get("id"),
            account_name=data.get("name"),
            account_email=data.get("email"),
            extra={"plan": data.get("plan")},
        )

    async def sync(self, context: SyncContext, options: SyncOptions) -> list[StandardIngestItem]:
        limit = self.batch_limit(options)
        cursor = options.cursor
        items: list[StandardIngestItem] = []
        has_more = True

        async with self._client() as client:
            while has_more and len(items) < limit:
                params: dict[str, str] = {"limit": str(min(_PAGE_SIZE, limit - len(items)))}
                if cursor:
                    params["cursor"] = cursor
                if options.since is not None:
                    params["since"] = options.since.isoformat()

                resp = await self._request(
                    client,
                    "GET",
                    f"{self.base_url}/meetings",
                    params=params,
                    headers=self._headers(context.tokens),
                )
                page = resp.json()
                items.extend(self._normalize_meeting(m) for m in page.get("meetings", []))

                has_more = bool(page.get("has_more"))
                cursor = page.get("cursor") if has_more else None
                if has_more and len(items) < limit:
                    await asyncio.sleep(self.rate_limit_delay)

        context.next_cursor = cursor
        logger.info("Pulled %d Granola meetings for integration %s", len(items), context.integration_id)
        return items

    @staticmethod
    def _normalize_meeting(meeting: dict) -> StandardIngestItem:
        sections: list[str] = []
        if meeting.get("summary"):
            sections.append(f"## Summary\n{meeting['summary']}")
        if meeting.get("notes"):
            sections.append(f"## Notes\n{meeting['notes']}")
        action_items: list[str] = meeting.get("action_items") or []
        if action_items:
            sections.append("## Action Items\n" + "\n".join(f"- {a}" for a in action_items))
        transcript = meeting.get("transcript")
        if transcript:
            if len(transcript) > _TRANSCRIPT_LIMIT:
                transcript = transcript[:_TRANSCRIPT_LIMIT] + "..."
            sections.append(f"## Transcript\n{transcript}")

        start = _parse_ts(meeting.get("date"))
        updated = _parse_ts(meeting.get("updated_at"))
        duration = meeting.get("duration")

        return StandardIngestItem(
            source_provider=IntegrationProvider.GRANOLA,
            source_id=str(meeting["id"]),
            source_url=meeting.get("url"),
            type=IngestItemType.MEETING,
            title=meeting.get("title") or "Untitled meeting",
            content="\n\n".join(sections),
            summary=meeting.get("summary"),
            raw_content=meeting,
            metadata=IngestItemMetadata(
                timestamp=updated or start or datetime.now(timezone.utc),
                created_at=_parse_ts(meeting.get("created_at")),
                updated_at=updated,
                tags=meeting.get("tags") or [],
                details=MeetingDetails(
                    start_time=start,
                    duration_minutes=int(duration) if duration is not None else None,
                    participants=meeting.get("participants") or [],
                    action_items=action_items,
                    has_transcript=bool(meeting.get("transcript")),
                ),
            ),
            processing_hints=ProcessingHints(
                extract_tasks=bool(action_items),
                extract_memories=True,
            ),
        )
