"""Static definitions for providers that have no adapter in this build.

They are listed so clients can render the full integration catalog; every
entry is marked unavailable until an adapter is registered for it.
"""

from tributary.integrations.config import IntegrationDefinition, IntegrationFeatures
from tributary.models.enums import (
    AuthMethod,
    IngestItemType as T,
    IntegrationCategory as C,
    IntegrationProvider as P,
    SyncMethod,
)

_OAUTH = AuthMethod.OAUTH2
_KEY = AuthMethod.API_KEY

# provider, name, description, category, auth, sync method, item types, interval (min)
_ENTRIES = [
    (P.GOOGLE_CALENDAR, "Google Calendar", "Meetings and events from your calendars.",
     C.MEETINGS_NOTES, _OAUTH, SyncMethod.HYBRID, [T.MEETING], 15),
    (P.NOTION, "Notion", "Pages and databases from your Notion workspace.",
     C.KNOWLEDGE_READING, _OAUTH, SyncMethod.PULL, [T.NOTE, T.DOCUMENT, T.TASK], 30),
    (P.SLACK, "Slack", "Saved messages and threads from Slack.",
     C.COMMUNICATION, _OAUTH, SyncMethod.HYBRID, [T.MESSAGE], 15),
    (P.TODOIST, "Todoist", "Tasks and projects from Todoist.",
     C.TASKS_PROJECTS, _OAUTH, SyncMethod.HYBRID, [T.TASK], 15),
    (P.TICKTICK, "TickTick", "Tasks and lists from TickTick.",
     C.TASKS_PROJECTS, _OAUTH, SyncMethod.PULL, [T.TASK], 15),
    (P.LINEAR, "Linear", "Issues and projects from Linear.",
     C.TASKS_PROJECTS, _OAUTH, SyncMethod.HYBRID, [T.ISSUE, T.COMMENT], 15),
    (P.GMAIL, "Gmail", "Starred and labelled email threads.",
     C.COMMUNICATION, _OAUTH, SyncMethod.PULL, [T.EMAIL], 15),
    (P.OBSIDIAN, "Obsidian", "Notes from an Obsidian vault.",
     C.KNOWLEDGE_READING, AuthMethod.CUSTOM, SyncMethod.PUSH, [T.NOTE], 60),
    (P.ROAM, "Roam Research", "Blocks and pages from Roam.",
     C.KNOWLEDGE_READING, _KEY, SyncMethod.PULL, [T.NOTE], 60),
    (P.MEM_AI, "Mem", "Notes from Mem.",
     C.KNOWLEDGE_READING, _KEY, SyncMethod.PULL, [T.NOTE], 60),
    (P.POCKET, "Pocket", "Saved articles from Pocket.",
     C.KNOWLEDGE_READING, _OAUTH, SyncMethod.PULL, [T.ARTICLE, T.BOOKMARK], 60),
    (P.INSTAPAPER, "Instapaper", "Saved articles and highlights from Instapaper.",
     C.KNOWLEDGE_READING, _OAUTH, SyncMethod.PULL, [T.ARTICLE, T.HIGHLIGHT], 60),
    (P.RAINDROP, "Raindrop.io", "Bookmarks and collections from Raindrop.",
     C.KNOWLEDGE_READING, _OAUTH, SyncMethod.PULL, [T.BOOKMARK], 60),
    (P.DISCORD, "Discord", "Messages from selected Discord channels.",
     C.COMMUNICATION, AuthMethod.BOT_TOKEN, SyncMethod.WEBHOOK, [T.MESSAGE], 15),
    (P.TELEGRAM, "Telegram", "Messages forwarded to the Telegram bot.",
     C.COMMUNICATION, AuthMethod.BOT_TOKEN, SyncMethod.WEBHOOK, [T.MESSAGE], 15),
    (P.MICROSOFT_TEAMS, "Microsoft Teams", "Messages and meetings from Teams.",
     C.COMMUNICATION, _OAUTH, SyncMethod.HYBRID, [T.MESSAGE, T.MEETING], 15),
    (P.ZOOM, "Zoom", "Meeting recordings and transcripts from Zoom.",
     C.MEETINGS_NOTES, _OAUTH, SyncMethod.WEBHOOK, [T.MEETING], 30),
    (P.HUBSPOT, "HubSpot", "Contacts, deals and notes from HubSpot.",
     C.PRODUCTIVITY, _OAUTH, SyncMethod.PULL, [T.NOTE], 60),
    (P.FIGMA, "Figma", "Comments on Figma files.",
     C.PRODUCTIVITY, _OAUTH, SyncMethod.WEBHOOK, [T.COMMENT], 60),
    (P.GOOGLE_DRIVE, "Google Drive", "Documents from Google Drive.",
     C.PRODUCTIVITY, _OAUTH, SyncMethod.PULL, [T.DOCUMENT], 60),
    (P.DROPBOX, "Dropbox", "Documents from Dropbox.",
     C.PRODUCTIVITY, _OAUTH, SyncMethod.PULL, [T.DOCUMENT], 60),
    (P.CHATGPT, "ChatGPT", "Conversation exports from ChatGPT.",
     C.CAPTURE_TOOLS, AuthMethod.CUSTOM, SyncMethod.PUSH, [T.NOTE], 60),
    (P.PERPLEXITY, "Perplexity", "Research threads from Perplexity.",
     C.CAPTURE_TOOLS, AuthMethod.CUSTOM, SyncMethod.PUSH, [T.NOTE], 60),
    (P.BROWSER_EXTENSION, "Browser Extension", "Clips and bookmarks from the browser extension.",
     C.CAPTURE_TOOLS, AuthMethod.CUSTOM, SyncMethod.PUSH, [T.CLIP, T.BOOKMARK, T.HIGHLIGHT], 60),
    (P.GOOGLE_SHEETS, "Google Sheets", "Rows from selected spreadsheets.",
     C.PRODUCTIVITY, _OAUTH, SyncMethod.PULL, [T.DOCUMENT], 60),
    (P.MIXPANEL, "Mixpanel", "Product analytics reports from Mixpanel.",
     C.PRODUCTIVITY, _KEY, SyncMethod.PULL, [T.NOTE], 1440),
    (P.POSTHOG, "PostHog", "Product analytics insights from PostHog.",
     C.PRODUCTIVITY, _KEY, SyncMethod.PULL, [T.NOTE], 1440),
    (P.AMPLITUDE, "Amplitude", "Product analytics charts from Amplitude.",
     C.PRODUCTIVITY, _KEY, SyncMethod.PULL, [T.NOTE], 1440),
]


def build_catalog() -> dict[P, IntegrationDefinition]:
    catalog: dict[P, IntegrationDefinition] = {}
    for provider, name, description, category, auth, sync_method, types, interval in _ENTRIES:
        catalog[provider] = IntegrationDefinition(
            id=provider,
            name=name,
            description=description,
            category=category,
            auth_method=auth,
            sync_method=sync_method,
            supported_types=types,
            default_sync_interval=interval,
            features=IntegrationFeatures(
                webhooks=sync_method in (SyncMethod.WEBHOOK, SyncMethod.HYBRID),
                realtime=sync_method in (SyncMethod.WEBHOOK, SyncMethod.PUSH),
            ),
            is_available=False,
            is_coming_soon=True,
        )
    return catalog
