"""
Pytest configuration and fixtures for ShakBot.
Only external collaborators (completion, speech, recognition, storage,
audio output) are faked; the conversation core runs for real.
"""

import asyncio
import heapq
import itertools
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence

import pytest

from shakbot.conversation.models import ChatSession, ImageAttachment, Message
from shakbot.conversation.state import SessionStore
from shakbot.core.config import Config, Environment
from shakbot.core.exceptions import RateLimitedError, StorageCapacityExceededError
from shakbot.core.persistence import JSONRepository
from shakbot.core.protocols import AudioBuffer, EditResult, RecognitionSegment


class FakeCompletionService:
    """Scripted completion backend."""

    def __init__(self, fragments: Optional[Sequence[str]] = None) -> None:
        self.fragments: List[str] = list(fragments or [])
        # Errors raised by successive stream attempts before any fragment
        self.stream_errors: List[BaseException] = []
        # Raise after yielding this many fragments
        self.fail_after: Optional[int] = None
        self.fail_error: BaseException = RuntimeError("stream broke")
        self.stream_calls: List[Dict[str, Any]] = []

        self.edit_result = EditResult()
        self.edit_errors: List[BaseException] = []
        self.edit_calls: List[Dict[str, Any]] = []

        self.title = "Heroic Greetings"
        self.title_error: Optional[BaseException] = None
        self.title_calls: List[str] = []

        self.memory_responses: List[Any] = []
        self.memory_calls: List[Dict[str, str]] = []

    def stream_turn(
        self, history: Sequence[Message], text: str, model_variant: str, memory: str
    ) -> AsyncIterator[str]:
        self.stream_calls.append(
            {
                "history": list(history),
                "text": text,
                "model_variant": model_variant,
                "memory": memory,
            }
        )

        async def _stream() -> AsyncIterator[str]:
            if self.stream_errors:
                raise self.stream_errors.pop(0)
            for i, fragment in enumerate(self.fragments):
                if self.fail_after is not None and i >= self.fail_after:
                    raise self.fail_error
                await asyncio.sleep(0)
                yield fragment

        return _stream()

    async def edit_or_generate_image(
        self, prompt: str, image: Optional[ImageAttachment] = None
    ) -> EditResult:
        self.edit_calls.append({"prompt": prompt, "image": image})
        if self.edit_errors:
            raise self.edit_errors.pop(0)
        return self.edit_result

    async def summarize_title(self, text: str) -> str:
        self.title_calls.append(text)
        await asyncio.sleep(0)
        if self.title_error is not None:
            raise self.title_error
        return self.title

    async def refine_memory(
        self, current_memory: str, user_text: str, model_text: str
    ) -> str:
        self.memory_calls.append(
            {"memory": current_memory, "user": user_text, "model": model_text}
        )
        response = self.memory_responses.pop(0) if self.memory_responses else current_memory
        if isinstance(response, asyncio.Future):
            response = await response
        if isinstance(response, BaseException):
            raise response
        return response


class ManualTimer:
    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic scheduler driven by advance()."""

    def __init__(self) -> None:
        self.now = 0.0
        self._counter = itertools.count()
        self._queue: List[Any] = []

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.now + delay_s, callback)
        heapq.heappush(self._queue, (timer.when, next(self._counter), timer))
        return timer

    @property
    def pending(self) -> List[ManualTimer]:
        return [t for _, _, t in self._queue if not t.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target + 1e-9:
            when, _, timer = heapq.heappop(self._queue)
            self.now = when
            if not timer.cancelled:
                timer.callback()
        self.now = target


class FakeRecognitionResource:
    def __init__(self, handler: Any, start_error: Optional[BaseException] = None) -> None:
        self.handler = handler
        self.start_error = start_error
        self.started = False
        self.stopped = False

    def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    def stop(self) -> None:
        self.stopped = True
        self.handler.on_end()

    def emit_result(self, text: str, final: bool = True) -> None:
        self.handler.on_result([RecognitionSegment(text=text, is_final=final)])

    def emit_segments(self, segments: List[RecognitionSegment]) -> None:
        self.handler.on_result(segments)

    def emit_error(self, error: Any) -> None:
        self.handler.on_error(error)

    def emit_end(self) -> None:
        self.handler.on_end()


class FakeRecognitionCapability:
    def __init__(self) -> None:
        self.resources: List[FakeRecognitionResource] = []
        # Errors raised by create() of successive resources
        self.create_errors: List[Optional[BaseException]] = []
        # Errors raised by start() of successive resources
        self.start_errors: List[Optional[BaseException]] = []

    def create(self, handler: Any) -> FakeRecognitionResource:
        create_error = self.create_errors.pop(0) if self.create_errors else None
        if create_error is not None:
            raise create_error
        error = self.start_errors.pop(0) if self.start_errors else None
        resource = FakeRecognitionResource(handler, error)
        self.resources.append(resource)
        return resource

    @property
    def current(self) -> FakeRecognitionResource:
        return self.resources[-1]

    @property
    def live(self) -> List[FakeRecognitionResource]:
        return [r for r in self.resources if r.started and not r.stopped]


class FakePersistence:
    """In-memory persistence with a byte capacity on the session snapshot."""

    def __init__(self, capacity_bytes: Optional[int] = None) -> None:
        self.capacity_bytes = capacity_bytes
        self.sessions: Dict[str, List[ChatSession]] = {}
        self.memory: Dict[str, str] = {}
        self.save_attempts: List[List[ChatSession]] = []
        self.deleted: List[str] = []
        self.fetch_error: Optional[BaseException] = None

    async def fetch_sessions(self, user_id: str) -> List[ChatSession]:
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.sessions.get(user_id, []))

    async def save_sessions(self, user_id: str, sessions: List[ChatSession]) -> None:
        self.save_attempts.append(sessions)
        size = len(JSONRepository.encode([s.to_dict() for s in sessions]).encode("utf-8"))
        if self.capacity_bytes is not None and size > self.capacity_bytes:
            raise StorageCapacityExceededError(size, self.capacity_bytes)
        self.sessions[user_id] = list(sessions)

    async def delete_session(self, user_id: str, session_id: str) -> None:
        self.deleted.append(session_id)
        self.sessions[user_id] = [
            s for s in self.sessions.get(user_id, []) if s.id != session_id
        ]

    async def fetch_memory(self, user_id: str) -> str:
        return self.memory.get(user_id, "")

    async def save_memory(self, user_id: str, memory: str) -> None:
        self.memory[user_id] = memory


class FakeSpeechService:
    def __init__(self, payload: bytes = b"", chunks: Optional[List[bytes]] = None) -> None:
        self.payload = payload
        self.chunks = list(chunks or [])
        self.errors: List[BaseException] = []
        self.calls: List[str] = []

    async def synthesize(self, text: str) -> bytes:
        self.calls.append(text)
        if self.errors:
            raise self.errors.pop(0)
        return self.payload

    async def synthesize_stream(self, text: str) -> AsyncIterator[bytes]:
        self.calls.append(text)
        for chunk in self.chunks:
            await asyncio.sleep(0)
            yield chunk


class FakePlaybackHandle:
    def __init__(self, buffer: AudioBuffer) -> None:
        self.buffer = buffer
        self.cancelled = False
        self._done = asyncio.Event()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def cancel(self) -> None:
        self.cancelled = True
        self._done.set()

    def finish(self) -> None:
        self._done.set()

    async def wait(self) -> None:
        await self._done.wait()


class FakeAudioOutput:
    def __init__(self, auto_finish: bool = True) -> None:
        self.auto_finish = auto_finish
        self.running_checks = 0
        self.handles: List[FakePlaybackHandle] = []

    def ensure_running(self) -> None:
        self.running_checks += 1

    def play(self, buffer: AudioBuffer) -> FakePlaybackHandle:
        handle = FakePlaybackHandle(buffer)
        self.handles.append(handle)
        if self.auto_finish:
            handle.finish()
        return handle


class SleepRecorder:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Testing configuration writing under a temporary directory."""
    config = Config(environment=Environment.TESTING)
    config.persistence.data_dir = tmp_path / "data"
    return config


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def completion() -> FakeCompletionService:
    return FakeCompletionService(["Hi", " there", "!"])


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def recognition() -> FakeRecognitionCapability:
    return FakeRecognitionCapability()


@pytest.fixture
def persistence() -> FakePersistence:
    return FakePersistence()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def rate_limit_error() -> RateLimitedError:
    return RateLimitedError()
