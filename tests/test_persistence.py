"""
Tests for file-backed persistence and storage degradation.
"""

from pathlib import Path
from typing import List

import pytest

from shakbot.conversation.models import (
    ChatSession,
    ErrorMessage,
    ImageAttachment,
    ModelMessage,
    UserMessage,
)
from shakbot.core.config import PersistenceConfig
from shakbot.core.exceptions import (
    PersistenceError,
    StorageCapacityExceededError,
    ValidationError,
)
from shakbot.core.persistence import (
    JSONPersistenceService,
    JSONRepository,
    PersistenceDegradationStrategy,
    QuotaKeyValueStore,
    SaveStage,
    strip_large_attachments,
)
from shakbot.services.error_messages import IMAGE_HIDDEN_MARKER
from tests.conftest import FakePersistence


def session_with_image(title: str, image_bytes: int) -> ChatSession:
    image = ImageAttachment(data=b"x" * image_bytes, mime_type="image/png")
    return ChatSession(
        title=title,
        messages=[
            UserMessage(text="Edit this", attachment=image),
            ModelMessage(text="Here", attachment=image, finalized=True),
        ],
    )


def encoded_size(sessions: List[ChatSession]) -> int:
    return len(JSONRepository.encode([s.to_dict() for s in sessions]).encode("utf-8"))


@pytest.fixture
def persistence_config(tmp_path: Path) -> PersistenceConfig:
    return PersistenceConfig(data_dir=tmp_path / "data")


@pytest.fixture
def service(persistence_config: PersistenceConfig) -> JSONPersistenceService:
    return JSONPersistenceService(persistence_config)


class TestJSONRepository:
    def test_missing_file_returns_default(self, tmp_path: Path) -> None:
        assert JSONRepository.load_json(tmp_path / "none.json", []) == []

    def test_corrupt_file_returns_default(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        assert JSONRepository.load_json(path, {"ok": False}) == {"ok": False}

    def test_atomic_write(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "value.json"
        JSONRepository.write_text_atomic(path, JSONRepository.encode({"a": 1}))
        assert JSONRepository.load_json(path) == {"a": 1}
        assert not path.with_suffix(".json.tmp").exists()

    def test_write_failure_raises(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("", encoding="utf-8")
        with pytest.raises(PersistenceError):
            JSONRepository.write_text_atomic(blocker / "child.json", "{}")

    def test_remove(self, tmp_path: Path) -> None:
        path = tmp_path / "gone.json"
        path.write_text("{}", encoding="utf-8")
        assert JSONRepository.remove(path) is True
        assert JSONRepository.remove(path) is False


class TestQuotaKeyValueStore:
    """Test quota enforcement."""

    def test_set_and_get(self, tmp_path: Path) -> None:
        kv = QuotaKeyValueStore(tmp_path, capacity_bytes=1000)
        kv.set("greeting", {"text": "hello"})
        assert kv.get("greeting") == {"text": "hello"}
        assert kv.used_bytes() > 0

    def test_rejects_write_over_capacity(self, tmp_path: Path) -> None:
        kv = QuotaKeyValueStore(tmp_path, capacity_bytes=40)
        kv.set("small", "ok")

        with pytest.raises(StorageCapacityExceededError) as exc_info:
            kv.set("big", "x" * 100)

        assert exc_info.value.capacity_bytes == 40
        assert kv.get("big") is None
        assert kv.get("small") == "ok"

    def test_overwrite_counts_replaced_value(self, tmp_path: Path) -> None:
        kv = QuotaKeyValueStore(tmp_path, capacity_bytes=30)
        kv.set("value", "x" * 20)
        kv.set("value", "y" * 20)
        assert kv.get("value") == "y" * 20

    @pytest.mark.parametrize("key", ["", "../escape", ".hidden"])
    def test_invalid_keys(self, tmp_path: Path, key: str) -> None:
        kv = QuotaKeyValueStore(tmp_path, capacity_bytes=100)
        with pytest.raises(ValidationError):
            kv.get(key)


class TestJSONPersistenceService:
    """Test session and memory storage."""

    @pytest.mark.asyncio
    async def test_empty_user(self, service: JSONPersistenceService) -> None:
        assert await service.fetch_sessions("alice") == []
        assert await service.fetch_memory("alice") == ""

    @pytest.mark.asyncio
    async def test_save_and_fetch_sessions(self, service: JSONPersistenceService) -> None:
        image = ImageAttachment(data=b"png", mime_type="image/png")
        session = ChatSession(
            title="Tea talk",
            messages=[
                UserMessage(text="Hi", attachment=image),
                ModelMessage(text="Hello", finalized=True),
                ErrorMessage(text="Oops"),
            ],
        )

        await service.save_sessions("alice", [session])
        loaded = await service.fetch_sessions("alice")

        assert len(loaded) == 1
        assert loaded[0].id == session.id
        assert loaded[0].title == "Tea talk"
        assert [type(m) for m in loaded[0].messages] == [UserMessage, ModelMessage, ErrorMessage]
        assert loaded[0].messages[0].attachment == image

    @pytest.mark.asyncio
    async def test_delete_session(self, service: JSONPersistenceService) -> None:
        first = ChatSession(title="One")
        second = ChatSession(title="Two")
        await service.save_sessions("alice", [first, second])

        await service.delete_session("alice", second.id)
        await service.delete_session("alice", "missing")

        loaded = await service.fetch_sessions("alice")
        assert [s.title for s in loaded] == ["One"]

    @pytest.mark.asyncio
    async def test_users_are_isolated(self, service: JSONPersistenceService) -> None:
        await service.save_sessions("alice", [ChatSession(title="A")])
        assert await service.fetch_sessions("bob") == []

    @pytest.mark.asyncio
    async def test_memory_roundtrip(self, service: JSONPersistenceService) -> None:
        await service.save_memory("alice", "Prefers tea.")
        assert await service.fetch_memory("alice") == "Prefers tea."

    @pytest.mark.asyncio
    async def test_capacity_rejection_keeps_previous_snapshot(self, tmp_path: Path) -> None:
        service = JSONPersistenceService(
            PersistenceConfig(data_dir=tmp_path, capacity_bytes=300)
        )
        await service.save_sessions("alice", [ChatSession(title="Small")])

        with pytest.raises(StorageCapacityExceededError):
            await service.save_sessions("alice", [session_with_image("Big", 1000)])

        assert [s.title for s in await service.fetch_sessions("alice")] == ["Small"]

    def test_invalid_user_id(self, service: JSONPersistenceService) -> None:
        with pytest.raises(ValidationError):
            service.store_for("../root")


class TestStripLargeAttachments:
    def test_large_images_replaced_with_marker(self) -> None:
        sessions = [session_with_image("Pics", 1000)]

        stripped = strip_large_attachments(sessions, threshold_chars=500)

        for message in stripped[0].messages:
            assert message.attachment is None
            assert message.text.endswith(IMAGE_HIDDEN_MARKER)
        # Input untouched
        assert sessions[0].messages[0].attachment is not None
        assert sessions[0].messages[0].text == "Edit this"

    def test_small_images_kept(self) -> None:
        stripped = strip_large_attachments([session_with_image("Icon", 10)], 500)
        assert stripped[0].messages[0].attachment is not None
        assert stripped[0].messages[0].text == "Edit this"


class TestPersistenceDegradationStrategy:
    """Test staged compaction under storage pressure."""

    @pytest.mark.asyncio
    async def test_full_save(self, persistence_config: PersistenceConfig) -> None:
        persistence = FakePersistence()
        strategy = PersistenceDegradationStrategy(persistence, persistence_config)
        sessions = [session_with_image("One", 1000)]

        outcome = await strategy.save("alice", sessions)

        assert outcome.stage is SaveStage.FULL
        assert outcome.success
        assert persistence.sessions["alice"][0].messages[0].attachment is not None

    @pytest.mark.asyncio
    async def test_strips_images_when_full(self, persistence_config: PersistenceConfig) -> None:
        sessions = [session_with_image(f"S{i}", 2000) for i in range(3)]
        stripped_size = encoded_size(strip_large_attachments(sessions, 500))
        persistence = FakePersistence(capacity_bytes=stripped_size)
        strategy = PersistenceDegradationStrategy(persistence, persistence_config)

        outcome = await strategy.save("alice", sessions)

        assert outcome.stage is SaveStage.ATTACHMENTS_STRIPPED
        assert outcome.persisted_count == 3
        assert len(persistence.save_attempts) == 2
        saved = persistence.sessions["alice"]
        assert all(m.attachment is None for s in saved for m in s.messages)
        # Caller's sessions keep their images
        assert sessions[0].messages[0].attachment is not None

    @pytest.mark.asyncio
    async def test_truncates_to_recent_sessions(
        self, persistence_config: PersistenceConfig
    ) -> None:
        sessions = [
            ChatSession(title=f"S{i}", messages=[UserMessage(text="y" * 200)])
            for i in range(8)
        ]
        recent_size = encoded_size(sessions[-5:])
        persistence = FakePersistence(capacity_bytes=recent_size)
        strategy = PersistenceDegradationStrategy(persistence, persistence_config)

        outcome = await strategy.save("alice", sessions)

        assert outcome.stage is SaveStage.TRUNCATED
        assert outcome.persisted_count == 5
        assert [s.title for s in persistence.sessions["alice"]] == [f"S{i}" for i in range(3, 8)]
        # The caller's list and sessions are not modified
        assert [s.title for s in sessions] == [f"S{i}" for i in range(8)]
        assert all(len(s.messages) == 1 for s in sessions)

    @pytest.mark.asyncio
    async def test_abandons_when_nothing_fits(
        self, persistence_config: PersistenceConfig
    ) -> None:
        persistence = FakePersistence(capacity_bytes=10)
        persistence.sessions["alice"] = [ChatSession(title="Previous")]
        strategy = PersistenceDegradationStrategy(persistence, persistence_config)
        sessions = [ChatSession(title=f"S{i}") for i in range(2)]

        outcome = await strategy.save("alice", sessions)

        assert outcome.stage is SaveStage.ABANDONED
        assert not outcome.success
        assert len(persistence.save_attempts) == 3
        assert [s.title for s in persistence.sessions["alice"]] == ["Previous"]

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, persistence_config: PersistenceConfig) -> None:
        class BrokenPersistence(FakePersistence):
            async def save_sessions(self, user_id: str, sessions: List[ChatSession]) -> None:
                raise PersistenceError("disk on fire")

        strategy = PersistenceDegradationStrategy(BrokenPersistence(), persistence_config)
        with pytest.raises(PersistenceError):
            await strategy.save("alice", [ChatSession()])
