"""
Tests for the per-connection message loop.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from equate_chat.app import message_loop
from equate_chat.plugins.ui_plugin import UIPlugin


class FlakyWebSocket:
    """Fails the first send, then records every frame."""

    def __init__(self, failures=1):
        self.failures = failures
        self.sent = []

    async def send_text(self, data):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(data))


@pytest.mark.asyncio
@pytest.mark.parametrize("first_outcome", ["first", ValueError("boom")])
async def test_failed_send_does_not_stop_the_loop(first_outcome):
    session = MagicMock()
    session.session_id = "test-session"
    session.submit = AsyncMock(side_effect=[first_outcome, "second"])
    websocket = FlakyWebSocket()
    ui_plugin = UIPlugin()
    await ui_plugin.set_websocket(websocket)
    await ui_plugin.add_message("one")
    await ui_plugin.add_message("two")

    task = asyncio.create_task(message_loop(session, ui_plugin))
    try:
        for _ in range(200):
            if websocket.sent:
                break
            await asyncio.sleep(0.01)
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert session.submit.await_count == 2
    assert websocket.sent == [{"type": "chat", "content": "second"}]
    assert not ui_plugin.is_running
