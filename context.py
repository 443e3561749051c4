from typing import Dict, List

from storage import Turn


class ContextWindow:
    def __init__(self, max_entries: int = 40):
        if max_entries < 2:
            raise ValueError("max_entries must allow at least one exchange")
        # Whole exchanges only
        self.max_entries = max_entries - (max_entries % 2)

    def estimate_tokens(self, text: str) -> int:
        """Rough token estimation (characters / 4)."""
        return len(text) // 4

    def trim(self, history: List[Turn]) -> List[Turn]:
        """Keep the most recent max_entries turns, oldest evicted first."""
        if len(history) <= self.max_entries:
            return list(history)
        return list(history[-self.max_entries:])

    def sanitize(self, history: List[Turn]) -> List[Turn]:
        """
        Return a copy of history that is safe to replay to the model.

        Only complete (user, model) exchanges survive. A trailing user turn
        means the previous exchange never got an answer; the provider rejects
        two user turns in a row, so it is dropped. An exchange with an invalid
        or empty side is dropped whole so its partner cannot break alternation.
        """
        cleaned: List[Turn] = []
        i = 0
        while i < len(history):
            turn = history[i]
            if (
                turn.role == "user" and turn.text
                and i + 1 < len(history)
                and history[i + 1].role == "model" and history[i + 1].text
            ):
                cleaned.extend((turn, history[i + 1]))
                i += 2
            else:
                i += 1

        # Even window over whole exchanges, so the slice starts on a user turn
        return self.trim(cleaned)

    def get_window_stats(self, history: List[Turn]) -> Dict[str, int]:
        """Get statistics about the current context window."""
        if not history:
            return {"total_messages": 0, "exchanges": 0, "total_tokens": 0, "max_messages": self.max_entries}

        return {
            "total_messages": len(history),
            "exchanges": sum(1 for t in history if t.role == "model"),
            "total_tokens": sum(self.estimate_tokens(t.text) for t in history),
            "max_messages": self.max_entries,
        }
