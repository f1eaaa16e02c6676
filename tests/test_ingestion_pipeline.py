"""Tests for the capture/memory/task pipeline."""

import pytest

from conftest import make_item
from tributary.integrations.normalized import MeetingDetails
from tributary.models.enums import CaptureType, IngestItemType, IntegrationProvider, TaskStatus
from tributary.repositories.pipeline_repo import CaptureRepository, MemoryRepository, TaskRepository
from tributary.services.ingestion_pipeline import (
    INGEST_TO_CAPTURE_TYPE,
    IngestionPipeline,
    PipelineOptions,
    PreviousOutputs,
    capture_content,
    memory_drafts,
    should_extract_tasks,
)


def _meeting(action_items, title="Weekly sync"):
    item = make_item("m1", title, "Discussed roadmap", provider=IntegrationProvider.GRANOLA, item_type=IngestItemType.MEETING)
    item.metadata.details = MeetingDetails(action_items=action_items)
    return item


def test_every_item_type_maps_to_a_capture_type():
    assert set(INGEST_TO_CAPTURE_TYPE) == set(IngestItemType)
    assert INGEST_TO_CAPTURE_TYPE[IngestItemType.ISSUE] == CaptureType.TASK
    assert INGEST_TO_CAPTURE_TYPE[IngestItemType.BOOKMARK] == CaptureType.RESOURCE


def test_capture_content_prefixes_title_and_attributes_source():
    item = make_item("n1", "Title", "Body")
    item.source_url = "https://notion.so/n1"
    text = capture_content(item)
    assert text.startswith("Title\n\nBody")
    assert text.endswith("Source: notion | https://notion.so/n1")


def test_memory_keys_are_stable_per_source_id():
    item = make_item("h9", content="Great insight", item_type=IngestItemType.HIGHLIGHT, tags=["ai"])
    item.summary = "Summary"
    keys = [d.key for d in memory_drafts(item)]
    assert keys == ["notion_summary_h9", "notion_highlight_h9", "notion_tags_h9"]
    assert keys == [d.key for d in memory_drafts(item)]


@pytest.mark.asyncio
async def test_same_source_id_from_two_providers_keeps_both_memories(db_session):
    pipeline = IngestionPipeline()
    from_notion = make_item("42", content="Notion text", item_type=IngestItemType.HIGHLIGHT)
    from_readwise = make_item("42", content="Readwise text", item_type=IngestItemType.HIGHLIGHT, provider=IntegrationProvider.READWISE)

    first = await pipeline.process(db_session, "user_1", from_notion)
    second = await pipeline.process(db_session, "user_1", from_readwise)
    assert set(first.memory_ids).isdisjoint(second.memory_ids)

    memories = MemoryRepository(db_session)
    assert (await memories.get_by_key("user_1", "notion_highlight_42")).value == "Notion text"
    assert (await memories.get_by_key("user_1", "readwise_highlight_42")).value == "Readwise text"


def test_should_extract_tasks():
    assert should_extract_tasks(make_item("t1", item_type=IngestItemType.ISSUE))
    assert not should_extract_tasks(make_item("n1"))
    hinted = make_item("n2")
    hinted.processing_hints.extract_tasks = True
    assert should_extract_tasks(hinted)


@pytest.mark.asyncio
async def test_meeting_action_items_become_tasks(db_session):
    pipeline = IngestionPipeline()
    item = _meeting(["Send notes", "Book venue"])
    item.processing_hints.extract_tasks = True

    result = await pipeline.process(db_session, "user_1", item)
    assert result.capture_id is not None
    assert len(result.task_ids) == 2

    tasks = TaskRepository(db_session)
    first = await tasks.get(result.task_ids[0])
    assert first.title == "Send notes"
    assert first.description == "From meeting: Weekly sync"
    assert first.status == TaskStatus.BACKLOG.value
    assert first.source_capture_id == result.capture_id

    memory = await MemoryRepository(db_session).get_by_key("user_1", "granola_meeting_m1")
    assert memory.category == "meetings"


@pytest.mark.asyncio
async def test_changed_item_updates_previous_records(db_session):
    pipeline = IngestionPipeline()
    first = await pipeline.process(db_session, "user_1", make_item("t1", "Fix bug", item_type=IngestItemType.TASK))

    task = await TaskRepository(db_session).get(first.task_ids[0])
    task.status = TaskStatus.IN_PROGRESS.value
    await db_session.flush()

    changed = make_item("t1", "Fix the login bug", item_type=IngestItemType.TASK)
    second = await pipeline.process(
        db_session,
        "user_1",
        changed,
        PreviousOutputs(capture_id=first.capture_id, task_ids=first.task_ids),
    )
    assert second.capture_id == first.capture_id
    assert second.task_ids == first.task_ids
    assert second.memory_ids == first.memory_ids

    task = await TaskRepository(db_session).get(first.task_ids[0])
    assert task.title == "Fix the login bug"
    assert task.status == TaskStatus.IN_PROGRESS.value
    capture = await CaptureRepository(db_session).get(first.capture_id)
    assert "Fix the login bug" in capture.content


@pytest.mark.asyncio
async def test_skip_options(db_session):
    pipeline = IngestionPipeline(PipelineOptions(skip_capture=True, skip_tasks=True))
    result = await pipeline.process(db_session, "user_1", make_item("t1", item_type=IngestItemType.ISSUE))
    assert result.capture_id is None
    assert result.task_ids == []
    assert len(result.memory_ids) == 1
