#!/usr/bin/env python3
"""
NZT terminal client
Talks to the relay over HTTP and keeps a stable user id between runs.
"""

import asyncio
import os
import uuid
from typing import Any, Dict, Optional

import httpx
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

USER_FILE = ".chat_user"


class SimpleChatClient:
    """Terminal front end for the NZT relay."""

    def __init__(self, base_url: Optional[str] = None, http_client: Optional[httpx.AsyncClient] = None,
                 user_file: str = USER_FILE):
        self.base_url = (base_url or os.getenv("API_URL", "http://localhost:8421")).rstrip("/")
        self.user_file = user_file
        self.user_id = self._load_user_id()
        # Server side may walk the whole retry ladder before answering
        self.client = http_client or httpx.AsyncClient(timeout=600.0)

    def _load_user_id(self) -> str:
        """Load the persistent user ID from file, creating one on first run."""
        try:
            if os.path.exists(self.user_file):
                with open(self.user_file, 'r') as f:
                    user_id = f.read().strip()
                    if user_id:
                        return user_id
        except OSError:
            pass

        user_id = f"cli-{uuid.uuid4().hex[:12]}"
        try:
            with open(self.user_file, 'w') as f:
                f.write(user_id)
        except OSError:
            pass
        return user_id

    def _show_help(self) -> None:
        """Display help information about available commands."""
        print("\n" + "="*60)
        print("NZT CHAT - AVAILABLE COMMANDS")
        print("="*60)
        print("  /start     - Start a new decision from scratch")
        print("  /reset     - Forget this conversation")
        print("  /help      - Show this help message")
        print("  Press Ctrl+C to quit")
        print("="*60 + "\n")

    async def send_message(self, message: str) -> Dict[str, Any]:
        """Send message to API and return the response payload."""
        response = await self.client.post(
            f"{self.base_url}/api/chat",
            json={"user_id": self.user_id, "message": message},
        )
        response.raise_for_status()
        return response.json()

    async def start(self) -> Dict[str, Any]:
        response = await self.client.post(f"{self.base_url}/api/start", json={"user_id": self.user_id})
        response.raise_for_status()
        return response.json()

    async def reset(self) -> None:
        response = await self.client.post(f"{self.base_url}/api/reset/{self.user_id}", timeout=30.0)
        response.raise_for_status()

    async def send_feedback(self, rating: int) -> str:
        response = await self.client.post(
            f"{self.base_url}/api/feedback",
            json={"user_id": self.user_id, "rating": rating},
            timeout=30.0,
        )
        response.raise_for_status()
        return response.json()["message"]

    async def _ask_feedback(self) -> None:
        try:
            answer = input("Was this analysis useful? rate 1-5 (Enter to skip): ").strip()
        except (KeyboardInterrupt, EOFError):
            return
        if answer.isdigit() and 1 <= int(answer) <= 5:
            print(f"* {await self.send_feedback(int(answer))}")

    def _print_reply(self, text: str) -> None:
        # Clear typing indicator
        print("\r" + " " * 20 + "\r", end="")
        print(f"\033[1mNZT:\033[0m {text}")
        print()

    async def run(self):
        """Run the chat client."""
        print("@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@")
        print("                                         ")
        print("                NZT chat                  ")
        print("                                         ")
        print("@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@")
        print("Type your message and press Enter to send.")
        print("Commands: /start, /reset, /help")
        print("Press Ctrl+C to quit.\n")

        try:
            while True:
                try:
                    message = input("> ").strip()
                except (KeyboardInterrupt, EOFError):
                    print("\n👋 Goodbye!")
                    break

                if not message:
                    continue

                if message == "/help":
                    self._show_help()
                    continue

                print("Thinking...", end="", flush=True)

                try:
                    if message == "/reset":
                        await self.reset()
                        self._print_reply("Conversation cleared.")
                        continue

                    data = await (self.start() if message == "/start" else self.send_message(message))
                    self._print_reply(data["response"])

                    if data.get("ask_feedback"):
                        await self._ask_feedback()

                except httpx.HTTPError as e:
                    print("\r" + " " * 20 + "\r", end="")
                    print(f"Error: {str(e)}")
                    print()

        finally:
            await self.client.aclose()


if __name__ == "__main__":
    client = SimpleChatClient()
    asyncio.run(client.run())
