from typing import Dict, List, Optional

from storage import Turn


class ChatSession:
    """Open conversational context for one user.

    Holds its own bounded copy of the replayed history. It is a cache only:
    dropping it loses nothing that the conversation store does not have.
    """

    def __init__(self, history: List[Turn], window):
        self.window = window
        self.history: List[Turn] = list(history)

    async def send(self, client, api_key: str, message: str, remember_as: Optional[str] = None) -> str:
        reply = await client.call(api_key, self.history, message)
        self.history.append(Turn(role="user", text=remember_as if remember_as is not None else message))
        self.history.append(Turn(role="model", text=reply))
        self.history = self.window.trim(self.history)
        return reply


class SessionCache:
    def __init__(self) -> None:
        self._sessions: Dict[str, ChatSession] = {}

    def get(self, user_id: str) -> Optional[ChatSession]:
        return self._sessions.get(str(user_id))

    def put(self, user_id: str, session: ChatSession) -> None:
        self._sessions[str(user_id)] = session

    def drop(self, user_id: str) -> None:
        self._sessions.pop(str(user_id), None)

    def clear(self) -> None:
        self._sessions.clear()

    def __contains__(self, user_id) -> bool:
        return str(user_id) in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
