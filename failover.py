"""
Keeping a turn alive against an unreliable provider.

Two nested mechanisms:

  RetryLadder          - retries one logical call across the key pool,
                         rotating on transient failures and evicting keys
                         the provider rejects as invalid.
  DegradationController - walks a single user turn down the degradation
                         states when a whole ladder gives up:

      LIVE       cached session, just the new message
      REBUILT    fresh session replayed from stored history
      STATELESS  history wiped, one context-free recovery call
      TERMINAL   static apology, nothing recorded
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Set

import prompts
from errors import InvalidCredential, ProviderError, RequestRejected
from keys import CredentialPool, PoolExhausted, mask_key
from sessions import ChatSession, SessionCache
from storage import ConversationStore, Turn

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    LIVE = "live"
    REBUILT = "rebuilt"
    STATELESS = "stateless"
    TERMINAL = "terminal"


@dataclass
class TurnResult:
    text: str
    state: TurnState


class LadderExhausted(Exception):
    """Every attempt in a ladder failed."""

    def __init__(self, label: str, attempts: int, last_error: Optional[Exception]):
        super().__init__(f"{label}: {attempts} attempt(s) failed, last error: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class RetryLadder:
    def __init__(
        self,
        pool: CredentialPool,
        attempts_per_key: int = 2,
        short_delay: float = 0.75,
        long_delay: float = 3.0,
        max_delay: float = 10.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.pool = pool
        self.attempts_per_key = max(1, attempts_per_key)
        self.short_delay = short_delay
        self.long_delay = long_delay
        self.max_delay = max_delay
        self.sleep = sleep or asyncio.sleep

    def _delay(self, tried: Set[str], cycle: int) -> float:
        """Short pause while untried keys remain, longer once rotation wraps."""
        if self.pool.current() not in tried:
            return self.short_delay
        return min(self.long_delay * cycle, self.max_delay)

    async def run(self, attempt: Callable[[str], Awaitable[str]], *, label: str = "call") -> str:
        """
        Run attempt(api_key) until it returns text or the budget runs out.

        Raises LadderExhausted when the budget is spent, RequestRejected when
        the provider refuses the request content, and PoolExhausted when no
        key is left.
        """
        budget = len(self.pool) * self.attempts_per_key
        tried: Set[str] = set()
        cycle = 0
        last_error: Optional[ProviderError] = None

        for number in range(1, budget + 1):
            key = self.pool.current()
            tried.add(key)

            try:
                text = await attempt(key)
            except RequestRejected as e:
                self.pool.record_failure(key, "rejected")
                logger.warning("%s attempt %d/%d with key %s rejected: %s",
                               label, number, budget, mask_key(key), e)
                raise
            except InvalidCredential as e:
                self.pool.record_failure(key, "invalid_credential")
                logger.warning("%s attempt %d/%d: key %s invalid, evicting",
                               label, number, budget, mask_key(key))
                self.pool.evict(key)
                last_error = e
                continue
            except ProviderError as e:
                reason = type(e).__name__
                self.pool.record_failure(key, reason)
                logger.warning("%s attempt %d/%d with key %s failed (%s): %s",
                               label, number, budget, mask_key(key), reason, e)
                last_error = e
                self.pool.rotate()
                if number < budget:
                    if self.pool.current() in tried:
                        cycle += 1
                    await self.sleep(self._delay(tried, cycle))
                continue

            self.pool.record_success(key)
            return text

        raise LadderExhausted(label, budget, last_error)


class DegradationController:
    """Runs one user turn down the LIVE -> REBUILT -> STATELESS -> TERMINAL ladder."""

    def __init__(
        self,
        client,
        pool: CredentialPool,
        store: ConversationStore,
        sessions: SessionCache,
        ladder: RetryLadder,
    ):
        self.client = client
        self.pool = pool
        self.store = store
        self.sessions = sessions
        self.ladder = ladder

    @property
    def window(self):
        return self.store.window

    async def respond(self, user_id: str, prompt: str, remember_as: Optional[str] = None) -> TurnResult:
        """
        Get a reply for prompt. On success, (remember_as, reply) is appended
        to the user's history; remember_as defaults to prompt, and callers
        pass the user's original text when prompt carries extra framing.
        """
        user_id = str(user_id)
        if remember_as is None:
            remember_as = prompt

        # A reset while a call is in flight replaces the record; the reply is
        # still returned but nothing is written into the fresh conversation
        record = self.store.get_or_create(user_id)

        try:
            session = self.sessions.get(user_id)
            if session is not None:
                try:
                    reply = await self.ladder.run(
                        lambda key: session.send(self.client, key, prompt, remember_as),
                        label=f"[{TurnState.LIVE.value}] user {user_id}",
                    )
                    return self._commit(user_id, record, remember_as, reply, TurnState.LIVE)
                except (LadderExhausted, RequestRejected) as e:
                    logger.warning("Live session failed for user %s, rebuilding: %s", user_id, e)
                    self.sessions.drop(user_id)

            stored = list(record.history)
            history = self.window.sanitize(stored)
            if history != stored:
                logger.info("History for user %s repaired: %d -> %d entries",
                            user_id, len(stored), len(history))
                self.store.replace_history(user_id, history)

            session = ChatSession(history, self.window)
            try:
                reply = await self.ladder.run(
                    lambda key: session.send(self.client, key, prompt, remember_as),
                    label=f"[{TurnState.REBUILT.value}] user {user_id}",
                )
                if self.store.get(user_id) is record:
                    self.sessions.put(user_id, session)
                return self._commit(user_id, record, remember_as, reply, TurnState.REBUILT)
            except (LadderExhausted, RequestRejected) as e:
                logger.error("Rebuilt session failed for user %s, wiping history: %s", user_id, e)

            return await self._recover(user_id, record, prompt, remember_as)

        except PoolExhausted as e:
            logger.error("No credentials left for user %s: %s", user_id, e)
        except (LadderExhausted, RequestRejected) as e:
            logger.error("Stateless recovery failed for user %s: %s", user_id, e)

        return TurnResult(prompts.APOLOGY, TurnState.TERMINAL)

    async def _recover(self, user_id: str, record, prompt: str, remember_as: str) -> TurnResult:
        # Nothing to gain from wiping when no key could make the call
        self.pool.current()

        self.sessions.drop(user_id)
        self.store.wipe_history(user_id)
        await self.store.flush()

        recovery = prompts.recovery_message(prompt)
        reply = await self.ladder.run(
            lambda key: self.client.generate(key, recovery),
            label=f"[{TurnState.STATELESS.value}] user {user_id}",
        )

        fresh = ChatSession([], self.window)
        fresh.history = [Turn(role="user", text=remember_as), Turn(role="model", text=reply)]
        if self.store.get(user_id) is record:
            self.sessions.put(user_id, fresh)
        return self._commit(user_id, record, remember_as, reply, TurnState.STATELESS)

    def _commit(self, user_id: str, record, user_text: str, reply: str, state: TurnState) -> TurnResult:
        if self.store.get(user_id) is record:
            self.store.append_exchange(user_id, user_text, reply)
        else:
            logger.info("User %s was reset during the call, reply not recorded", user_id)
        if state is not TurnState.LIVE:
            logger.info("Turn for user %s answered in %s state", user_id, state.value)
        return TurnResult(reply, state)
