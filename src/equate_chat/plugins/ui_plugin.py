import asyncio
import json
import logging

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class UIPlugin:
    """Bridge between one browser connection and its session.

    Prompts from the client are queued on ``message_queue``; streamed output
    and final replies are sent back as JSON frames of the form
    ``{"type": ..., "content": ...}``.
    """

    def __init__(self):
        self.message_queue = asyncio.Queue()
        self.websocket = None
        self.is_running = False

    async def set_websocket(self, websocket: WebSocket):
        self.websocket = websocket

    async def add_message(self, prompt: str):
        """Queue a prompt submitted by the user."""
        await self.message_queue.put(prompt)

    async def _send_to_ui(self, message_data: dict):
        """Send a frame to the websocket, if the client is still connected."""
        if self.websocket:
            await self.websocket.send_text(json.dumps(message_data, ensure_ascii=False))

    async def send_chunk(self, content: str):
        """Send one piece of streamed output (text or the separator sentinel)."""
        await self._send_to_ui({"type": "chunk", "content": content})

    async def send_reply(self, content: str):
        """Send the final response, which marks the end of the turn."""
        await self._send_to_ui({"type": "chat", "content": content})

    async def send_error(self, error: Exception):
        """Render a failed turn in the message stream and end the turn."""
        content = f"Sorry, I encountered an error: {str(error)}"
        await self.send_chunk(f"\n\n**{content}**")
        await self.send_reply(content)
