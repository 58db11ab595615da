"""
Lossy compaction of the session collection under storage pressure.

A save rejected for capacity is retried first without large image payloads,
then with only the most recent sessions. When even that is rejected the save
is abandoned and the previously persisted snapshot stays as it was. The
sessions passed in are never modified.
"""

import copy
import dataclasses
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional

from ...conversation.models import ChatSession, ErrorMessage
from ...services.error_messages import IMAGE_HIDDEN_MARKER
from ..config import PersistenceConfig
from ..exceptions import StorageCapacityExceededError
from ..protocols import PersistenceService

logger = logging.getLogger(__name__)


class SaveStage(IntEnum):
    """How much had to be dropped for a save to fit."""

    FULL = 0
    ATTACHMENTS_STRIPPED = 1
    TRUNCATED = 2
    ABANDONED = 3


@dataclass
class SaveOutcome:
    stage: SaveStage
    persisted_count: int

    @property
    def success(self) -> bool:
        return self.stage is not SaveStage.ABANDONED


def strip_large_attachments(
    sessions: List[ChatSession], threshold_chars: int
) -> List[ChatSession]:
    """Copy sessions, replacing attachments above the threshold with a text marker.

    The threshold applies to the attachment's data-URI length.
    """
    stripped = []
    for session in sessions:
        messages = []
        for message in session.messages:
            attachment = message.attachment
            if (
                not isinstance(message, ErrorMessage)
                and attachment is not None
                and len(attachment.to_data_uri()) > threshold_chars
            ):
                message = dataclasses.replace(
                    message, attachment=None, text=message.text + IMAGE_HIDDEN_MARKER
                )
            else:
                message = copy.deepcopy(message)
            messages.append(message)
        stripped.append(dataclasses.replace(session, messages=messages))
    return stripped


class PersistenceDegradationStrategy:
    """Saves the full session collection, compacting it when storage is full."""

    def __init__(
        self,
        persistence: PersistenceService,
        config: Optional[PersistenceConfig] = None,
    ):
        self.persistence = persistence
        self.config = config or PersistenceConfig()

    async def save(self, user_id: str, sessions: List[ChatSession]) -> SaveOutcome:
        """Persist sessions, degrading on capacity rejection.

        Errors other than a capacity rejection propagate unchanged.
        """
        try:
            await self.persistence.save_sessions(user_id, sessions)
            return SaveOutcome(SaveStage.FULL, len(sessions))
        except StorageCapacityExceededError as e:
            logger.warning(f"Storage quota exceeded, optimizing history: {e}")

        text_only = strip_large_attachments(sessions, self.config.attachment_threshold_chars)
        try:
            await self.persistence.save_sessions(user_id, text_only)
            logger.info("History saved without images")
            return SaveOutcome(SaveStage.ATTACHMENTS_STRIPPED, len(text_only))
        except StorageCapacityExceededError as e:
            logger.warning(f"Still full, trimming old sessions: {e}")

        keep = max(0, self.config.keep_recent_sessions)
        recent = text_only[-keep:] if keep else []
        try:
            await self.persistence.save_sessions(user_id, recent)
            logger.info(f"History trimmed to the {len(recent)} most recent sessions")
            return SaveOutcome(SaveStage.TRUNCATED, len(recent))
        except StorageCapacityExceededError as e:
            logger.error(f"Critically low storage, could not save history: {e}")

        return SaveOutcome(SaveStage.ABANDONED, 0)
