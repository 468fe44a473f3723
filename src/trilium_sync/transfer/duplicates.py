"""Duplicate detection against the note store.

Every note the engine creates carries a label holding its external path
(``original-path``, ``git-path``, ``directory-path``). A later run finds
the earlier note by searching for that exact label value and applies the
configured policy:

- ``skip``: keep the existing note, record the file as skipped, no writes.
- ``overwrite``: update title/type/mime, then replace the content.

A failed lookup counts as "not found" so one flaky search cannot fail the
whole run. This leaves a time-of-check/time-of-use gap: two operations
running against the same location at once can both create a note.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from trilium_sync.config_schema import DuplicateHandling
from trilium_sync.core.async_utils import run_sync
from trilium_sync.core.client import EtapiClient

logger = logging.getLogger(__name__)


class DuplicateAction(str, Enum):
    CREATE = "create"
    SKIP = "skip"
    OVERWRITE = "overwrite"


@dataclass(frozen=True)
class DuplicateDecision:
    action: DuplicateAction
    existing_id: str | None = None


def label_query(label: str, value: str) -> str:
    """Build a Trilium search matching one exact label value."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'#{label} = "{escaped}"'


class DuplicateResolver:
    """Look up existing notes by path label and apply the policy.

    Args:
        client: ETAPI client.
        policy: Skip or overwrite.
    """

    def __init__(self, client: EtapiClient, policy: DuplicateHandling) -> None:
        self.client = client
        self.policy = policy

    async def find_existing(self, label: str, value: str) -> str | None:
        """Return the id of a note labelled ``label=value``, if any."""
        try:
            notes = await run_sync(
                self.client.search_notes, label_query(label, value)
            )
        except Exception as exc:
            logger.warning(
                "Duplicate lookup for %s=%s failed, treating as new: %s",
                label,
                value,
                exc,
            )
            return None
        for note in notes:
            # Search may match prefixes or inherited labels
            if value in note.labels(label):
                return note.note_id
        return None

    async def resolve(self, label: str, value: str) -> DuplicateDecision:
        existing = await self.find_existing(label, value)
        if existing is None:
            return DuplicateDecision(DuplicateAction.CREATE)
        if self.policy == DuplicateHandling.SKIP:
            logger.debug("Skipping existing note %s for %s", existing, value)
            return DuplicateDecision(DuplicateAction.SKIP, existing)
        return DuplicateDecision(DuplicateAction.OVERWRITE, existing)

    async def overwrite(
        self,
        note_id: str,
        title: str,
        content: str,
        type: str = "text",
        mime: str | None = "text/html",
    ) -> None:
        """Update an existing note's metadata, then replace its content."""
        await run_sync(
            self.client.update_note, note_id, title=title, type=type, mime=mime
        )
        await run_sync(self.client.update_note_content, note_id, content)
