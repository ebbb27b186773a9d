"""
Conversation messages and the per-session conversation state.

Messages are immutable tuples in the shape the OpenAI Chat Completions API
expects. Streamed model deltas arrive as ``Fragment`` objects and are folded
into an ``AccumulatedResponse`` with :func:`merge_fragment`.
"""

import uuid
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

SYSTEM_ROLE = "system"
USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
TOOL_ROLE = "tool"


class ToolCallRequest(NamedTuple):
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: str  # JSON text, exactly as produced by the model


class Message(NamedTuple):
    role: str
    content: str = ""
    tool_calls: Tuple[ToolCallRequest, ...] = ()
    tool_call_id: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(SYSTEM_ROLE, content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(USER_ROLE, content)

    @classmethod
    def assistant(
        cls, content: str, tool_calls: Tuple[ToolCallRequest, ...] = ()
    ) -> "Message":
        return cls(ASSISTANT_ROLE, content, tuple(tool_calls))

    @classmethod
    def tool_result(cls, content: str, tool_call_id: str) -> "Message":
        return cls(TOOL_ROLE, content, tool_call_id=tool_call_id)

    def to_openai(self) -> Dict[str, Any]:
        """Convert to a Chat Completions message dictionary."""
        if self.role == TOOL_ROLE:
            return {
                "role": TOOL_ROLE,
                "content": self.content,
                "tool_call_id": self.tool_call_id,
            }
        if self.tool_calls:
            return {
                "role": ASSISTANT_ROLE,
                "content": self.content or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments},
                    }
                    for call in self.tool_calls
                ],
            }
        return {"role": self.role, "content": self.content}


class ToolCallDelta(NamedTuple):
    """Partial tool call data carried by one streamed fragment."""

    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""


class Fragment(NamedTuple):
    """One streamed piece of a model response."""

    text: str = ""
    tool_calls: Tuple[ToolCallDelta, ...] = ()


class PartialToolCall(NamedTuple):
    index: int
    id: Optional[str]
    name: Optional[str]
    arguments: str


class AccumulatedResponse(NamedTuple):
    """The merged model response of the current streaming pass."""

    text: str = ""
    tool_calls: Tuple[PartialToolCall, ...] = ()

    def to_message(self) -> Message:
        """Build the assistant message, including any requested tool calls."""
        requests = tuple(
            ToolCallRequest(
                id=call.id or f"call_{uuid.uuid4().hex}",
                name=call.name or "",
                arguments=call.arguments,
            )
            for call in self.tool_calls
        )
        return Message.assistant(self.text, requests)


def merge_fragment(
    accumulated: Optional[AccumulatedResponse], fragment: Fragment
) -> AccumulatedResponse:
    """Fold a streamed fragment into the accumulated response.

    Text concatenates. Tool call argument fragments concatenate per call
    index, and the id and name of a call come from the first fragment that
    carries them. A call index not seen before is appended, so calls keep
    the order in which the model started them.
    """
    if accumulated is None:
        accumulated = AccumulatedResponse()

    calls = list(accumulated.tool_calls)
    positions = {call.index: pos for pos, call in enumerate(calls)}
    for delta in fragment.tool_calls:
        if delta.index in positions:
            pos = positions[delta.index]
            current = calls[pos]
            calls[pos] = PartialToolCall(
                index=current.index,
                id=current.id or delta.id,
                name=current.name or delta.name,
                arguments=current.arguments + (delta.arguments or ""),
            )
        else:
            positions[delta.index] = len(calls)
            calls.append(
                PartialToolCall(
                    index=delta.index,
                    id=delta.id,
                    name=delta.name,
                    arguments=delta.arguments or "",
                )
            )

    return AccumulatedResponse(
        text=accumulated.text + (fragment.text or ""), tool_calls=tuple(calls)
    )


class ConversationState:
    """Message log and per-turn scratch fields owned by one session."""

    def __init__(self, session_id: Optional[str] = None, messages=None):
        self.session_id = session_id or str(uuid.uuid4())
        self.messages: List[Message] = []
        self.accumulated: Optional[AccumulatedResponse] = None
        self.stacked_response = False
        self._requested_call_ids = set()
        if messages:
            self.append(*messages)

    def __len__(self) -> int:
        return len(self.messages)

    def append(self, *messages: Message) -> None:
        """Append messages to the log.

        Raises
        ------
        ValueError
            If a tool result does not answer a previously requested call.
        """
        for message in messages:
            if message.role == TOOL_ROLE and (
                message.tool_call_id not in self._requested_call_ids
            ):
                raise ValueError(
                    f"Tool result references unknown tool call: {message.tool_call_id}"
                )
            self.messages.append(message)
            for call in message.tool_calls:
                self._requested_call_ids.add(call.id)

    def begin_turn(self, prompt: str) -> None:
        """Append the user's prompt and reset the scratch fields."""
        self.accumulated = None
        self.stacked_response = False
        self.append(Message.user(prompt))

    def to_openai(self) -> List[Dict[str, Any]]:
        return [message.to_openai() for message in self.messages]

    def pending_tool_calls(self) -> List[ToolCallRequest]:
        """Tool calls of the latest tool-call message that have no result yet."""
        answered = set()
        for message in reversed(self.messages):
            if message.role == TOOL_ROLE:
                answered.add(message.tool_call_id)
            elif message.tool_calls:
                return [call for call in message.tool_calls if call.id not in answered]
        return []

    def close_pending_tool_calls(self, reason: str) -> int:
        """Answer every pending tool call with ``reason`` so the log stays valid."""
        pending = self.pending_tool_calls()
        for call in pending:
            self.append(Message.tool_result(reason, call.id))
        return len(pending)
