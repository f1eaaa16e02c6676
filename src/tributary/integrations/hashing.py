"""Stable content hashing for change detection of ingested items."""

import hashlib
import json

from tributary.integrations.normalized import StandardIngestItem


def content_hash(item: StandardIngestItem) -> str:
    """Compute SHA-256 over the canonical JSON of the user-visible fields.

    Only title, content, summary, source URL and tags participate, so
    metadata churn (timestamps, counters) does not register as a change.
    """
    canonical = {
        "title": item.title or "",
        "content": item.content or "",
        "summary": item.summary or "",
        "source_url": item.source_url or "",
        "tags": sorted(item.metadata.tags),
    }
    payload = json.dumps(canonical, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
