"""
Streaming completion pipeline.

Drives one primary chat turn for a session: appends the user message, then
either streams text fragments into a placeholder model message or issues a
single multimodal edit/generation request whose reply is appended atomically.
Failures, after the retry policy is exhausted, become an error message in
the session. At most one primary turn runs per session at a time.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

from ..core.config import RetryPolicyConfig
from ..core.logging import (
    StepTimer,
    clear_turn_context,
    get_logger,
    new_turn_id,
    set_turn_context,
)
from ..core.protocols import CompletionService
from ..core.resilience import is_rate_limited, retry_with_backoff
from ..services.error_messages import ServiceErrorMessages
from .enrichment import BackgroundEnrichment
from .models import ErrorMessage, ImageAttachment, Message, ModelMessage, UserMessage
from .state import SessionStore

logger = logging.getLogger(__name__)
turn_logger = get_logger(__name__, component="pipeline")


@dataclass
class TurnOutcome:
    """Result of one primary turn."""

    session_id: str
    turn_id: str
    user_message_id: str
    reply_message_id: Optional[str] = None
    text: str = ""
    success: bool = True
    rate_limited: bool = False
    error: Optional[BaseException] = None


class StreamingCompletionPipeline:
    """Runs primary turns against the completion service."""

    def __init__(
        self,
        store: SessionStore,
        completion: CompletionService,
        enrichment: Optional[BackgroundEnrichment] = None,
        retry_config: Optional[RetryPolicyConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.completion = completion
        self.enrichment = enrichment
        self.retry_config = retry_config or RetryPolicyConfig()
        self._sleep = sleep

    async def run_turn(
        self,
        session_id: str,
        text: str,
        attachment: Optional[ImageAttachment] = None,
        generate_image: bool = False,
    ) -> Optional[TurnOutcome]:
        """Run one primary turn.

        Returns None without side effects when there is nothing to send, the
        session does not exist, or the session already has a turn in flight.
        """
        text = text.strip()
        if not text and attachment is None:
            return None

        session = self.store.get_session(session_id)
        if session is None:
            logger.debug(f"Ignoring turn for unknown session {session_id}")
            return None

        if not self.store.begin_turn(session_id):
            logger.warning(f"Session {session_id} already has a turn in flight")
            return None

        turn_id = new_turn_id()
        set_turn_context(turn_id=turn_id, session_id=session_id)

        history: List[Message] = session.messages
        user_message = UserMessage(text=text, attachment=attachment)
        self.store.append_message(session_id, user_message)
        outcome = TurnOutcome(
            session_id=session_id,
            turn_id=turn_id,
            user_message_id=user_message.id,
        )
        multimodal = attachment is not None or generate_image

        try:
            with StepTimer(
                turn_logger, "turn",
                mode="multimodal" if multimodal else "text",
            ):
                if multimodal:
                    await self._run_edit(outcome, text, attachment)
                else:
                    await self._run_stream(outcome, history, text)
        except Exception as e:
            self._record_failure(outcome, e)
        else:
            if self.enrichment is not None:
                self.enrichment.after_exchange(
                    session_id,
                    user_text=text,
                    model_text=outcome.text,
                    refine_memory=not multimodal,
                )
        finally:
            self.store.end_turn(session_id)
            clear_turn_context()

        return outcome

    async def _run_stream(
        self, outcome: TurnOutcome, history: List[Message], text: str
    ) -> None:
        session_id = outcome.session_id
        placeholder = ModelMessage()
        self.store.append_message(session_id, placeholder)
        outcome.reply_message_id = placeholder.id

        model_variant = self.store.state.model_variant
        memory = self.store.state.memory

        async def attempt() -> str:
            accumulated = ""
            # A retried attempt restarts the reply from scratch
            self.store.update_message_text(session_id, placeholder.id, accumulated)
            async for fragment in self.completion.stream_turn(
                history, text, model_variant, memory
            ):
                if not fragment:
                    continue
                accumulated += fragment
                self.store.update_message_text(session_id, placeholder.id, accumulated)
            return accumulated

        outcome.text = await retry_with_backoff(
            attempt,
            config=self.retry_config,
            sleep=self._sleep,
            operation="chat turn",
        )
        self.store.finalize_message(session_id, placeholder.id)
        turn_logger.info("Turn completed", reply_chars=len(outcome.text))

    async def _run_edit(
        self, outcome: TurnOutcome, text: str, attachment: Optional[ImageAttachment]
    ) -> None:
        result = await retry_with_backoff(
            lambda: self.completion.edit_or_generate_image(text, attachment),
            config=self.retry_config,
            sleep=self._sleep,
            operation="image request",
        )

        reply_text = (result.text or "").strip() or ServiceErrorMessages.get_image_reply(
            has_image=result.image is not None, edited=attachment is not None
        )
        reply = ModelMessage(text=reply_text, attachment=result.image, finalized=True)
        self.store.append_message(outcome.session_id, reply)
        outcome.reply_message_id = reply.id
        outcome.text = reply_text
        turn_logger.info("Image turn completed", has_image=result.image is not None)

    def _record_failure(self, outcome: TurnOutcome, error: Exception) -> None:
        session_id = outcome.session_id
        rate_limited = is_rate_limited(error)

        if outcome.reply_message_id is not None:
            # Keep whatever partial text streamed before the failure
            self.store.finalize_message(session_id, outcome.reply_message_id)

        notice = ErrorMessage(text=ServiceErrorMessages.get_turn_failure(rate_limited))
        self.store.append_message(session_id, notice)

        outcome.success = False
        outcome.rate_limited = rate_limited
        outcome.error = error
        turn_logger.error(
            "Turn failed",
            error=str(error),
            error_type=type(error).__name__,
            rate_limited=rate_limited,
        )
