"""String enums shared by the sync engine, the store and the API.

Enum values are persisted; never rename an existing value.
"""

from enum import StrEnum


class IntegrationProvider(StrEnum):
    GOOGLE_CALENDAR = "google_calendar"
    NOTION = "notion"
    SLACK = "slack"
    GRANOLA = "granola"
    READWISE = "readwise"
    TODOIST = "todoist"
    TICKTICK = "ticktick"
    LINEAR = "linear"
    GMAIL = "gmail"
    GITHUB = "github"
    OBSIDIAN = "obsidian"
    ROAM = "roam"
    MEM_AI = "mem_ai"
    POCKET = "pocket"
    INSTAPAPER = "instapaper"
    RAINDROP = "raindrop"
    DISCORD = "discord"
    TELEGRAM = "telegram"
    MICROSOFT_TEAMS = "microsoft_teams"
    ZOOM = "zoom"
    HUBSPOT = "hubspot"
    FIGMA = "figma"
    GOOGLE_DRIVE = "google_drive"
    DROPBOX = "dropbox"
    CHATGPT = "chatgpt"
    PERPLEXITY = "perplexity"
    BROWSER_EXTENSION = "browser_extension"
    STRIPE = "stripe"
    GOOGLE_SHEETS = "google_sheets"
    MIXPANEL = "mixpanel"
    POSTHOG = "posthog"
    AMPLITUDE = "amplitude"

    @classmethod
    def from_slug(cls, slug: str) -> "IntegrationProvider":
        """Accept URL slugs such as ``google-calendar``. Raises ValueError if unknown."""
        return cls(slug.strip().lower().replace("-", "_"))


class IngestItemType(StrEnum):
    NOTE = "note"
    HIGHLIGHT = "highlight"
    MEETING = "meeting"
    TASK = "task"
    MESSAGE = "message"
    ARTICLE = "article"
    BOOKMARK = "bookmark"
    DOCUMENT = "document"
    EMAIL = "email"
    COMMENT = "comment"
    ISSUE = "issue"
    CLIP = "clip"


class SyncStatus(StrEnum):
    PENDING = "pending"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


class IngestedItemStatus(StrEnum):
    PENDING = "pending"
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


class ItemOutcome(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


class AuthMethod(StrEnum):
    OAUTH2 = "oauth2"
    API_KEY = "api_key"
    BOT_TOKEN = "bot_token"
    CUSTOM = "custom"


class SyncMethod(StrEnum):
    PULL = "pull"
    PUSH = "push"
    WEBHOOK = "webhook"
    HYBRID = "hybrid"


class IntegrationCategory(StrEnum):
    MEETINGS_NOTES = "meetings_notes"
    KNOWLEDGE_READING = "knowledge_reading"
    TASKS_PROJECTS = "tasks_projects"
    COMMUNICATION = "communication"
    PRODUCTIVITY = "productivity"
    CAPTURE_TOOLS = "capture_tools"


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CaptureType(StrEnum):
    NOTE = "note"
    TASK = "task"
    RESOURCE = "resource"


class TaskStatus(StrEnum):
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"
