import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class Turn(BaseModel):
    role: Literal["user", "model"]
    text: str


class ConversationRecord(BaseModel):
    history: List[Turn] = Field(default_factory=list)
    last_seen: Optional[datetime] = None
    topic: str = ""

    @field_validator("last_seen")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStore:
    """
    Every user's conversation, held in memory and mirrored to one JSON file.

    Mutations mark the store dirty and arm a single debounce timer; when it
    fires the whole mapping is written at once, so a burst of updates costs
    one disk write. The last ~debounce_seconds of updates can be lost on a
    crash. close() flushes whatever is pending.
    """

    def __init__(self, path: str, window, debounce_seconds: float = 1.0):
        self.path = path
        self.window = window
        self.debounce_seconds = debounce_seconds
        self._records: Dict[str, ConversationRecord] = {}
        self._dirty = False
        self._flush_task: Optional[asyncio.Task] = None
        self._write_lock = asyncio.Lock()
        self._closing = False
        self.writes = 0

    def load(self) -> None:
        """Load the store from disk. A missing or unreadable file means empty."""
        self._records = {}
        if not os.path.exists(self.path):
            logger.info("No memory file at %s, starting empty", self.path)
            return

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Memory file %s unreadable (%s), starting empty", self.path, e)
            return

        if not isinstance(raw, dict):
            logger.warning("Memory file %s is not a mapping, starting empty", self.path)
            return

        for user_id, data in raw.items():
            try:
                self._records[str(user_id)] = ConversationRecord.model_validate(data)
            except ValidationError as e:
                logger.warning("Skipping corrupt record for user %s: %s", user_id, e.error_count())

        logger.info("Memory loaded: %d conversation(s)", len(self._records))

    # -- records -----------------------------------------------------------

    def get(self, user_id: str) -> Optional[ConversationRecord]:
        return self._records.get(str(user_id))

    def get_or_create(self, user_id: str) -> ConversationRecord:
        user_id = str(user_id)
        record = self._records.get(user_id)
        if record is None:
            record = ConversationRecord()
            self._records[user_id] = record
            self.schedule_save()
        return record

    def list_users(self) -> List[str]:
        return list(self._records.keys())

    def history(self, user_id: str) -> List[Turn]:
        record = self.get(user_id)
        return list(record.history) if record else []

    def touch(self, user_id: str, now: Optional[datetime] = None) -> Optional[datetime]:
        """Record an inbound message and return the previous last_seen."""
        record = self.get_or_create(user_id)
        previous = record.last_seen
        record.last_seen = now or utcnow()
        self.schedule_save()
        return previous

    def set_topic(self, user_id: str, topic: str) -> None:
        self.get_or_create(user_id).topic = topic
        self.schedule_save()

    def append_exchange(self, user_id: str, user_text: str, model_text: str) -> None:
        """Append one (user, model) pair; the two sides are always written together."""
        record = self.get_or_create(user_id)
        history = self.window.sanitize(record.history)
        history.append(Turn(role="user", text=user_text))
        history.append(Turn(role="model", text=model_text))
        record.history = self.window.trim(history)
        self.schedule_save()

    def replace_history(self, user_id: str, history: List[Turn]) -> None:
        self.get_or_create(user_id).history = list(history)
        self.schedule_save()

    def wipe_history(self, user_id: str) -> None:
        self.get_or_create(user_id).history = []
        self.schedule_save()

    def reset(self, user_id: str) -> None:
        self._records[str(user_id)] = ConversationRecord()
        self.schedule_save()

    # -- persistence -------------------------------------------------------

    @property
    def dirty(self) -> bool:
        return self._dirty

    def schedule_save(self) -> None:
        """Mark the store dirty and arm the debounce timer if it is not running."""
        self._dirty = True
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.get_running_loop().create_task(self._delayed_flush())

    async def _delayed_flush(self) -> None:
        # Mutations made while a write is in flight keep the loop going
        while self._dirty and not self._closing:
            await asyncio.sleep(self.debounce_seconds)
            if self._dirty:
                await self.flush()

    def _snapshot(self) -> str:
        data: Dict[str, Any] = {
            user_id: record.model_dump(mode="json")
            for user_id, record in self._records.items()
        }
        return json.dumps(data, indent=2, ensure_ascii=False)

    def _write(self, payload: str) -> None:
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, 'w', encoding='utf-8') as f:
            f.write(payload)
        os.replace(tmp_path, self.path)

    async def flush(self) -> None:
        """Write the current state to disk now."""
        async with self._write_lock:
            # Snapshot taken inside the lock so later mutations are never
            # overwritten by an older payload
            self._dirty = False
            payload = self._snapshot()
            try:
                await asyncio.to_thread(self._write, payload)
            except OSError:
                self._dirty = True
                logger.exception("Saving memory to %s failed", self.path)
                return
            self.writes += 1

    async def close(self) -> None:
        """Stop the debounce timer and flush anything not yet on disk."""
        self._closing = True
        try:
            task = self._flush_task
            self._flush_task = None
            if task is not None and not task.done():
                if self._write_lock.locked():
                    # Cancelling would not stop the worker thread, so let
                    # the write finish; the loop exits once it does
                    await task
                else:
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass
            if self._dirty:
                await self.flush()
        finally:
            self._closing = False
