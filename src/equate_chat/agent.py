import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .messages import AccumulatedResponse, ConversationState, Message, merge_fragment
from .model import ChatModel
from .tool_registry import ToolRegistry

logger = logging.getLogger(__name__)

# Chunk sent to the client to render a rule between stacked responses
SEPARATOR = "__pure__ :: <hr>"

STREAMING = "streaming"
TOOL_EXECUTION = "tool_execution"
DONE = "done"

ChunkCallback = Callable[[str], Awaitable[None]]


class ToolLoopExceededError(RuntimeError):
    """Raised when the model keeps requesting tools past the per-turn limit."""

    def __init__(self, max_tool_rounds: int):
        self.max_tool_rounds = max_tool_rounds
        super().__init__(
            f"tool-loop-exceeded: the model requested more than "
            f"{max_tool_rounds} rounds of tool calls in one turn"
        )


class SessionLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that automatically injects session_id into structured logs."""

    def __init__(self, logger, session_id):
        self.session_id = session_id
        super().__init__(logger, {})

    def process(self, msg, kwargs):
        if "extra" in kwargs and "structured" in kwargs["extra"]:
            kwargs["extra"]["structured"]["session_id"] = self.session_id
        return msg, kwargs


class Environment:
    """Environment owns the tools and the system prompt shared by all sessions."""

    def __init__(self, base_system_prompt: str, plugins: list):
        self.base_system_prompt = base_system_prompt
        self.plugins = plugins

        self.tool_registry = ToolRegistry()
        for plugin in plugins:
            if hasattr(plugin, "hook_provide_tools"):
                for method in plugin.hook_provide_tools():
                    self.tool_registry.register_callable(method)

        self._instructions = self._assemble_system_prompt()

    def _assemble_system_prompt(self) -> str:
        instructions = self.base_system_prompt.strip()
        additions = []
        for plugin in self.plugins:
            if hasattr(plugin, "hook_provide_system_prompt"):
                addition = plugin.hook_provide_system_prompt()
                if addition and addition.strip():
                    additions.append(addition.strip())
        if additions:
            instructions = f"{instructions}\n\n" + "\n\n".join(additions)
        return instructions

    def instructions(self) -> str:
        """Return the assembled system prompt."""
        return self._instructions

    def tool_schemas(self) -> list:
        return self.tool_registry.get_schemas()


class Agent:
    """Runs turns against one conversation, interleaving streaming and tool calls.

    Each turn alternates between two states. While *streaming*, the model
    sees the whole message log and its text is forwarded to the chunk
    callback as it arrives. If the finished pass requested tools, the agent
    moves to *tool execution*, runs the calls in order, and streams again.
    A pass without tool calls ends the turn.
    """

    def __init__(
        self,
        env: Environment,
        model: ChatModel,
        state: ConversationState,
        max_tool_rounds: int = 10,
    ):
        self.env = env
        self.model = model
        self.state = state
        self.max_tool_rounds = max_tool_rounds  # Prevent infinite tool call loops
        self.logger = SessionLoggerAdapter(logger, state.session_id)

    def log_item(self, item_type: str, extra: dict):
        structured = {"log_type": item_type, **extra}
        self.logger.info(
            f"{item_type.replace('_', ' ').title()} received",
            extra={"structured": structured},
        )

    async def run(self, prompt: str, on_chunk: Optional[ChunkCallback] = None) -> str:
        """Stream a response to ``prompt``, keeping message history.

        Parameters
        ----------
        prompt : str
            The user prompt.
        on_chunk : callable, optional
            Awaited with every text chunk of the response, and with
            ``SEPARATOR`` between stacked responses.

        Returns
        -------
        str
            The content of the final assistant message.

        Raises
        ------
        ToolLoopExceededError
            If the model requests more than ``max_tool_rounds`` tool rounds.
        openai.APIError
            If the model call fails after the client's retries.
        """
        self.log_item("user_input", {"content": prompt})
        self.state.begin_turn(prompt)

        phase = STREAMING
        tool_rounds = 0
        try:
            while phase != DONE:
                if phase == STREAMING:
                    phase = await self._stream_pass(on_chunk)
                else:
                    tool_rounds += 1
                    if tool_rounds > self.max_tool_rounds:
                        raise ToolLoopExceededError(self.max_tool_rounds)
                    await self._execute_tool_calls()
                    phase = STREAMING
        except (Exception, asyncio.CancelledError) as e:
            # Leave no tool call unanswered, or the next request would be rejected
            closed = self.state.close_pending_tool_calls(f"Error: turn aborted ({e!r})")
            if closed:
                self.logger.info(f"Closed {closed} pending tool call(s) after turn failure")
            self.state.accumulated = None
            raise

        return self.state.messages[-1].content

    async def _emit(self, on_chunk: Optional[ChunkCallback], text: str):
        if on_chunk is not None:
            await on_chunk(text)

    async def _stream_pass(self, on_chunk: Optional[ChunkCallback]) -> str:
        """Stream one model response and decide where the turn goes next."""
        stream = self.model.stream(self.state.to_openai(), self.env.tool_schemas())
        async for fragment in stream:
            self.state.accumulated = merge_fragment(self.state.accumulated, fragment)

            if fragment.text:
                # Put a rule between stacked responses
                if self.state.stacked_response:
                    await self._emit(on_chunk, SEPARATOR)
                    self.state.stacked_response = False
                await self._emit(on_chunk, fragment.text)

        accumulated = self.state.accumulated or AccumulatedResponse()
        self.state.accumulated = accumulated
        self.log_item(
            "model_response",
            {"content": accumulated.text, "tool_calls": len(accumulated.tool_calls)},
        )

        if not accumulated.tool_calls:
            self.state.append(accumulated.to_message())
            return DONE

        # Keep the text written so far as its own message so the model
        # continues the response where it left off
        has_text = bool(accumulated.text.strip())
        if has_text:
            self.state.append(Message.assistant(accumulated.text))
        self.state.append(accumulated.to_message())
        self.state.stacked_response = has_text
        return TOOL_EXECUTION

    async def _execute_tool_calls(self):
        """Run the tool calls of the last assistant message, in request order."""
        call_message = self.state.messages[-1]
        for call in call_message.tool_calls:
            self.log_item(
                "tool_call",
                {"tool_name": call.name, "arguments": call.arguments, "call_id": call.id},
            )
            output = await self.env.tool_registry.execute_tool_call(call)
            self.log_item("tool_result", {"tool_name": call.name, "result": output})
            self.state.append(Message.tool_result(output, call.id))

        self.state.accumulated = None
