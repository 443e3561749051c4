"""Fakes and builders shared by the conversation core tests."""

from typing import Callable, List, Optional

from context import ContextWindow
from failover import DegradationController, RetryLadder
from keys import CredentialPool
from sessions import SessionCache
from storage import ConversationStore, Turn


class FakeLLM:
    """Stands in for LLMClient. responder(shape, key, history, message) returns text or raises."""

    def __init__(self, responder: Optional[Callable] = None):
        self.responder = responder or (lambda shape, key, history, message: f"reply to {message}")
        self.calls: List[dict] = []
        self.closed = False

    async def call(self, api_key, history, message, timeout=None):
        self.calls.append({"shape": "call", "key": api_key, "history": list(history), "message": message})
        return self.responder("call", api_key, list(history), message)

    async def generate(self, api_key, prompt, timeout=None):
        self.calls.append({"shape": "generate", "key": api_key, "history": [], "message": prompt})
        return self.responder("generate", api_key, [], prompt)

    async def close(self):
        self.closed = True


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_history(exchanges: int, trailing_user: bool = False) -> List[Turn]:
    history = []
    for i in range(exchanges):
        history.append(Turn(role="user", text=f"question {i}"))
        history.append(Turn(role="model", text=f"answer {i}"))
    if trailing_user:
        history.append(Turn(role="user", text="unanswered"))
    return history


class Core:
    """A wired controller over fakes."""

    def __init__(self, tmp_path, keys=("key-a", "key-b"), responder=None, max_entries=40,
                 attempts_per_key=2):
        self.window = ContextWindow(max_entries)
        self.store = ConversationStore(str(tmp_path / "memory.json"), self.window, debounce_seconds=0.01)
        self.pool = CredentialPool(keys)
        self.llm = FakeLLM(responder)
        self.sleep = SleepRecorder()
        self.ladder = RetryLadder(self.pool, attempts_per_key=attempts_per_key, sleep=self.sleep)
        self.sessions = SessionCache()
        self.controller = DegradationController(self.llm, self.pool, self.store, self.sessions, self.ladder)


