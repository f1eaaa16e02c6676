"""Turns normalized items into captures, memories and tasks.

The pipeline writes through the caller's session so that its records
commit or roll back together with the ingested-item ledger row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from tributary.db.base import generate_id
from tributary.integrations.normalized import MeetingDetails, StandardIngestItem
from tributary.models.enums import CaptureType, IngestItemType, Priority, TaskStatus
from tributary.repositories.pipeline_repo import CaptureRepository, MemoryRepository, TaskRepository

logger = logging.getLogger(__name__)

INGEST_TO_CAPTURE_TYPE: dict[IngestItemType, CaptureType] = {
    IngestItemType.NOTE: CaptureType.NOTE,
    IngestItemType.HIGHLIGHT: CaptureType.NOTE,
    IngestItemType.MEETING: CaptureType.NOTE,
    IngestItemType.TASK: CaptureType.TASK,
    IngestItemType.MESSAGE: CaptureType.NOTE,
    IngestItemType.ARTICLE: CaptureType.RESOURCE,
    IngestItemType.BOOKMARK: CaptureType.RESOURCE,
    IngestItemType.DOCUMENT: CaptureType.NOTE,
    IngestItemType.EMAIL: CaptureType.NOTE,
    IngestItemType.COMMENT: CaptureType.NOTE,
    IngestItemType.ISSUE: CaptureType.TASK,
    IngestItemType.CLIP: CaptureType.RESOURCE,
}

MEMORY_CATEGORY: dict[IngestItemType, str] = {
    IngestItemType.NOTE: "notes",
    IngestItemType.HIGHLIGHT: "reading_highlights",
    IngestItemType.MEETING: "meetings",
    IngestItemType.TASK: "tasks",
    IngestItemType.MESSAGE: "communication",
    IngestItemType.ARTICLE: "reading",
    IngestItemType.BOOKMARK: "resources",
    IngestItemType.DOCUMENT: "documents",
    IngestItemType.EMAIL: "communication",
    IngestItemType.COMMENT: "communication",
    IngestItemType.ISSUE: "tasks",
    IngestItemType.CLIP: "web_clips",
}

_TASK_TYPES = (IngestItemType.TASK, IngestItemType.ISSUE)


@dataclass
class PipelineOptions:
    skip_capture: bool = False
    skip_memories: bool = False
    skip_tasks: bool = False
    project_id: str | None = None


@dataclass
class PreviousOutputs:
    """Records produced the last time this item was dispatched."""

    capture_id: str | None = None
    task_ids: list[str] = field(default_factory=list)


@dataclass
class PipelineResult:
    capture_id: str | None = None
    memory_ids: list[str] = field(default_factory=list)
    task_ids: list[str] = field(default_factory=list)


@dataclass
class _MemoryDraft:
    key: str
    value: str
    category: str
    confidence: int


def capture_content(item: StandardIngestItem) -> str:
    content = item.content
    if item.title and not content.startswith(item.title):
        content = f"{item.title}\n\n{content}"
    attribution = f"Source: {item.source_provider.value}"
    if item.source_url:
        attribution += f" | {item.source_url}"
    return f"{content}\n\n---\n{attribution}"


def memory_drafts(item: StandardIngestItem) -> list[_MemoryDraft]:
    """Derive keyed memories from an item.

    Keys are ``<provider>_<kind>_<source id>``: stable across re-syncs and
    distinct between providers that happen to share a source id.
    """
    drafts: list[_MemoryDraft] = []
    sid = item.source_id
    provider = item.source_provider.value

    if item.summary:
        drafts.append(_MemoryDraft(
            key=f"{provider}_summary_{sid}",
            value=item.summary,
            category=MEMORY_CATEGORY.get(item.type, "general"),
            confidence=80,
        ))

    if item.type == IngestItemType.MEETING and item.title:
        drafts.append(_MemoryDraft(
            key=f"{provider}_meeting_{sid}",
            value=f"Meeting: {item.title}. {item.summary or item.content[:200]}",
            category="meetings",
            confidence=85,
        ))
    elif item.type == IngestItemType.HIGHLIGHT:
        drafts.append(_MemoryDraft(
            key=f"{provider}_highlight_{sid}", value=item.content, category="reading_highlights", confidence=90
        ))
    elif item.type in _TASK_TYPES and item.title:
        drafts.append(_MemoryDraft(key=f"{provider}_task_{sid}", value=f"Task: {item.title}", category="tasks", confidence=85))
    elif item.type in (IngestItemType.BOOKMARK, IngestItemType.ARTICLE) and item.title and item.source_url:
        drafts.append(_MemoryDraft(
            key=f"{provider}_resource_{sid}",
            value=f"Saved: {item.title} - {item.source_url}",
            category="resources",
            confidence=75,
        ))

    if item.metadata.tags:
        drafts.append(_MemoryDraft(
            key=f"{provider}_tags_{sid}",
            value=f"Tagged with: {', '.join(item.metadata.tags)}",
            category="tags",
            confidence=80,
        ))
    return drafts


def should_extract_tasks(item: StandardIngestItem) -> bool:
    return item.type in _TASK_TYPES or item.processing_hints.extract_tasks


class IngestionPipeline:
    """Creates (or, for changed items, updates) the downstream records of one item."""

    def __init__(self, options: PipelineOptions | None = None):
        self.options = options or PipelineOptions()

    async def process(
        self,
        session: AsyncSession,
        user_id: str,
        item: StandardIngestItem,
        previous: PreviousOutputs | None = None,
    ) -> PipelineResult:
        previous = previous or PreviousOutputs()
        project_id = self.options.project_id or item.processing_hints.link_to_project
        result = PipelineResult()

        if not self.options.skip_capture:
            result.capture_id = await self._write_capture(session, user_id, item, project_id, previous.capture_id)

        if not self.options.skip_memories:
            memories = MemoryRepository(session)
            source = f"{item.source_provider.value}:{item.source_id}"
            for draft in memory_drafts(item):
                row = await memories.upsert(
                    user_id=user_id,
                    key=draft.key,
                    value=draft.value,
                    category=draft.category,
                    source=source,
                    confidence=draft.confidence,
                    project_id=project_id,
                )
                result.memory_ids.append(row.memory_id)

        if not self.options.skip_tasks and should_extract_tasks(item):
            result.task_ids = await self._write_tasks(
                session, user_id, item, project_id, result.capture_id, previous.task_ids
            )

        logger.debug(
            "Pipeline processed %s:%s (capture=%s, memories=%d, tasks=%d)",
            item.source_provider.value,
            item.source_id,
            result.capture_id,
            len(result.memory_ids),
            len(result.task_ids),
        )
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _write_capture(
        session: AsyncSession,
        user_id: str,
        item: StandardIngestItem,
        project_id: str | None,
        existing_id: str | None,
    ) -> str:
        repo = CaptureRepository(session)
        content = capture_content(item)
        capture_type = INGEST_TO_CAPTURE_TYPE.get(item.type, CaptureType.NOTE).value

        if existing_id:
            row = await repo.get(existing_id)
            if row is not None:
                await repo.update(row, content=content, capture_type=capture_type)
                return row.capture_id

        row = await repo.create(
            capture_id=generate_id("cap_"),
            user_id=user_id,
            project_id=project_id,
            capture_type=capture_type,
            content=content,
            source=item.source_provider.value,
            source_ref={"source_id": item.source_id, "source_url": item.source_url},
        )
        return row.capture_id

    @staticmethod
    def _task_drafts(item: StandardIngestItem) -> list[tuple[str, str]]:
        if item.type in _TASK_TYPES:
            return [((item.title or item.content[:100])[:500], item.content)]
        details = item.metadata.details
        if isinstance(details, MeetingDetails):
            context = f"From meeting: {item.title}" if item.title else None
            return [(action[:500], context) for action in details.action_items]
        return []

    async def _write_tasks(
        self,
        session: AsyncSession,
        user_id: str,
        item: StandardIngestItem,
        project_id: str | None,
        capture_id: str | None,
        existing_ids: list[str],
    ) -> list[str]:
        repo = TaskRepository(session)
        priority = (item.processing_hints.priority or Priority.MEDIUM).value
        rationale = f"Imported from {item.source_provider.value}"
        task_ids: list[str] = []

        for index, (title, description) in enumerate(self._task_drafts(item)):
            row = await repo.get(existing_ids[index]) if index < len(existing_ids) else None
            if row is not None:
                # Status is user-owned once the task exists.
                await repo.update(row, title=title, description=description, priority=priority)
            else:
                row = await repo.create(
                    task_id=generate_id("tsk_"),
                    user_id=user_id,
                    project_id=project_id,
                    title=title,
                    description=description,
                    status=TaskStatus.BACKLOG.value,
                    priority=priority,
                    ai_suggested=True,
                    ai_rationale=rationale,
                    source=item.source_provider.value,
                    source_capture_id=capture_id,
                )
            task_ids.append(row.task_id)
        return task_ids
