"""
Background enrichment tasks.

After a primary turn finalizes, two detached tasks may run: memory refinement
and title synthesis. Neither holds the loading flag and neither goes through
the retry controller; their failures are logged and absorbed. Results are
written back only through the session store.
"""

import asyncio
import logging
from typing import Any, Coroutine, Optional, Set

from ..core.config import EnrichmentConfig
from ..core.protocols import CompletionService
from .state import SessionStore

logger = logging.getLogger(__name__)

# Message count of a session right after its first user/model exchange
FIRST_EXCHANGE_MESSAGE_COUNT = 2


class BackgroundEnrichment:
    """Launches and tracks detached enrichment tasks."""

    def __init__(
        self,
        store: SessionStore,
        completion: CompletionService,
        config: Optional[EnrichmentConfig] = None,
    ):
        self.store = store
        self.completion = completion
        self.config = config or EnrichmentConfig()

        self._tasks: Set["asyncio.Task[None]"] = set()
        self._titled_sessions: Set[str] = set()
        self._launch_seq = 0
        self._applied_seq = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def after_exchange(
        self,
        session_id: str,
        user_text: str,
        model_text: str,
        refine_memory: bool = True,
    ) -> None:
        """Launch enrichment for a successfully finalized exchange."""
        if (
            self.config.title_synthesis_enabled
            and session_id not in self._titled_sessions
            and self.store.message_count(session_id) == FIRST_EXCHANGE_MESSAGE_COUNT
        ):
            self._titled_sessions.add(session_id)
            self._spawn(
                self._synthesize_title(session_id, user_text),
                name=f"title-{session_id}",
            )

        if refine_memory and self.config.memory_refinement_enabled:
            self._launch_seq += 1
            self._spawn(
                self._refine_memory(
                    seq=self._launch_seq,
                    snapshot=self.store.state.memory,
                    user_text=user_text,
                    model_text=model_text,
                ),
                name=f"memory-{self._launch_seq}",
            )

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _synthesize_title(self, session_id: str, user_text: str) -> None:
        try:
            title = await self.completion.summarize_title(user_text)
        except Exception as e:
            logger.warning(f"Title synthesis failed for session {session_id}: {e}")
            return

        title = (title or "").strip()
        if not title:
            return
        # No-op when the session was deleted meanwhile
        self.store.rename_session(session_id, title)
        logger.debug(f"Session {session_id} titled '{title}'")

    async def _refine_memory(
        self, seq: int, snapshot: str, user_text: str, model_text: str
    ) -> None:
        try:
            refined = await self.completion.refine_memory(snapshot, user_text, model_text)
        except Exception as e:
            logger.warning(f"Memory refinement failed: {e}")
            return

        refined = (refined or "").strip()
        if not refined or refined == snapshot:
            return

        if self.config.monotonic_memory_updates and seq < self._applied_seq:
            logger.info(
                f"Discarding stale memory refinement {seq} "
                f"(refinement {self._applied_seq} already applied)"
            )
            return

        self._applied_seq = seq
        version = self.store.set_memory(refined)
        logger.info(f"Memory updated (version {version})")

    async def drain(self) -> None:
        """Wait for every in-flight enrichment task, including ones spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
