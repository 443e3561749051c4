"""
Turn handler: the two entry points a transport needs.

    handle_turn(user_id, text) -> reply text, never raises
    reset_user(user_id)        -> clears the user's conversation
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Optional

import prompts
from config import Settings
from context import ContextWindow
from failover import DegradationController, RetryLadder, TurnResult
from keys import CredentialPool
from llm import LLMClient
from sessions import SessionCache
from storage import ConversationStore, utcnow

logger = logging.getLogger(__name__)

TOPIC_MAX_CHARS = 80
# Topic is only derived while the conversation is young
TOPIC_MAX_HISTORY = 6


def derive_topic(text: str) -> str:
    topic = re.sub(r"\s+", " ", text).strip()
    if len(topic) > TOPIC_MAX_CHARS:
        topic = topic[:TOPIC_MAX_CHARS - 1].rstrip() + "…"
    return topic


def is_verdict(text: str) -> bool:
    """Whether a reply carries the final-verdict format, so a rating can be asked for."""
    return any(marker in text for marker in prompts.VERDICT_MARKERS)


class ChatAgent:
    def __init__(
        self,
        store: ConversationStore,
        controller: DegradationController,
        sessions: SessionCache,
        absence_threshold: timedelta = timedelta(hours=24),
        max_message_chars: int = 4000,
    ):
        self.store = store
        self.controller = controller
        self.sessions = sessions
        self.absence_threshold = absence_threshold
        self.max_message_chars = max_message_chars

    async def handle_turn(self, user_id, text: Optional[str], now: Optional[datetime] = None) -> str:
        """Answer one inbound message. Every failure resolves to a reply string."""
        user_id = str(user_id)
        try:
            text = (text or "").strip()
            if not text:
                return prompts.EMPTY_MESSAGE_REPLY
            if len(text) > self.max_message_chars:
                logger.info("Truncating %d-char message from user %s", len(text), user_id)
                text = text[:self.max_message_chars]

            now = now or utcnow()
            previous = self.store.touch(user_id, now)
            record = self.store.get_or_create(user_id)

            if not record.topic and len(record.history) < TOPIC_MAX_HISTORY:
                self.store.set_topic(user_id, derive_topic(text))

            prompt = text
            if previous is not None and len(record.history) >= 2:
                away = now - previous
                if away > self.absence_threshold:
                    logger.info("User %s returning after %s", user_id, away)
                    prompt = prompts.returning_user_message(
                        text, away.total_seconds() / 3600, record.topic
                    )

            result = await self.controller.respond(user_id, prompt, remember_as=text)
            return result.text
        except Exception:
            logger.exception("Unhandled failure in turn for user %s", user_id)
            return prompts.APOLOGY

    async def start_user(self, user_id) -> str:
        """Reset the conversation and open it with the persona's hook."""
        user_id = str(user_id)
        try:
            await self.reset_user(user_id)
            self.store.touch(user_id)
            result: TurnResult = await self.controller.respond(
                user_id, prompts.START_COMMAND, remember_as=prompts.START_LABEL
            )
            return result.text
        except Exception:
            logger.exception("Unhandled failure starting user %s", user_id)
            return prompts.APOLOGY

    async def reset_user(self, user_id) -> None:
        user_id = str(user_id)
        self.sessions.drop(user_id)
        self.store.reset(user_id)
        logger.info("Conversation reset for user %s", user_id)

    def record_feedback(self, user_id, rating: int) -> str:
        logger.info("Rating from user %s: %d/5", user_id, rating)
        return prompts.FEEDBACK_THANKS[rating >= 4]

    async def close(self) -> None:
        await self.store.close()
        await self.controller.client.close()


def build_agent(settings: Settings) -> ChatAgent:
    """Wire the conversation core from settings. Fails when no credentials are configured."""
    pool = CredentialPool(settings.api_keys)
    window = ContextWindow(settings.max_history_entries)

    store = ConversationStore(settings.memory_file, window, settings.save_debounce_seconds)
    store.load()

    client = LLMClient(
        system_instruction=prompts.SYSTEM_INSTRUCTION,
        model=settings.model,
        base_url=settings.base_url,
        temperature=settings.temperature,
        thinking_budget=settings.thinking_budget,
        timeout=settings.call_timeout_seconds,
    )
    ladder = RetryLadder(
        pool,
        attempts_per_key=settings.attempts_per_key,
        short_delay=settings.backoff_short_seconds,
        long_delay=settings.backoff_long_seconds,
        max_delay=settings.backoff_max_seconds,
    )
    sessions = SessionCache()
    controller = DegradationController(client, pool, store, sessions, ladder)

    logger.info("Conversation core ready: model=%s credentials=%d window=%d",
                settings.model, len(pool), window.max_entries)
    return ChatAgent(
        store,
        controller,
        sessions,
        absence_threshold=timedelta(hours=settings.absence_hours),
        max_message_chars=settings.max_message_chars,
    )
