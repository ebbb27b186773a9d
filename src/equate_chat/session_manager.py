import asyncio
import logging
import uuid
from typing import Callable, Dict, List, Optional

from .agent import Agent, ChunkCallback
from .messages import ConversationState, Message

logger = logging.getLogger(__name__)


class TurnTimeoutError(TimeoutError):
    """Raised when a turn does not finish within the session's turn timeout."""


class Session:
    """One connected client: its conversation and the agent that runs its turns."""

    def __init__(
        self,
        connection_id: str,
        agent: Agent,
        turn_timeout: Optional[float] = None,
    ):
        self.connection_id = connection_id
        self.agent = agent
        self.turn_timeout = turn_timeout
        # Turns share the agent's scratch fields, so only one may run at a time
        self.lock = asyncio.Lock()

    @property
    def state(self) -> ConversationState:
        return self.agent.state

    @property
    def session_id(self) -> str:
        return self.agent.state.session_id

    async def submit(self, prompt: str, on_chunk: Optional[ChunkCallback] = None) -> str:
        """Run one turn for ``prompt`` and return the final response.

        Raises
        ------
        TurnTimeoutError
            If the turn takes longer than ``turn_timeout`` seconds.
        """
        async with self.lock:
            if self.turn_timeout is None:
                return await self.agent.run(prompt, on_chunk)
            try:
                return await asyncio.wait_for(
                    self.agent.run(prompt, on_chunk), timeout=self.turn_timeout
                )
            except asyncio.TimeoutError:
                raise TurnTimeoutError(
                    f"The response took longer than {self.turn_timeout:g} seconds"
                ) from None


class SessionManager:
    """Owns the sessions of all live connections, keyed by connection id."""

    def __init__(
        self,
        create_agent: Callable[[ConversationState], Agent],
        initial_messages: Callable[[], List[Message]] = list,
        turn_timeout: Optional[float] = None,
    ):
        self.create_agent = create_agent
        self.initial_messages = initial_messages
        self.turn_timeout = turn_timeout
        self.sessions: Dict[str, Session] = {}

    def on_connect(self, connection_id: Optional[str] = None) -> Session:
        """Create the session for a new connection."""
        connection_id = connection_id or str(uuid.uuid4())
        state = ConversationState(
            session_id=str(uuid.uuid4()), messages=self.initial_messages()
        )
        session = Session(connection_id, self.create_agent(state), self.turn_timeout)
        self.sessions[connection_id] = session
        logger.info(f"User connected: {connection_id} (session {session.session_id})")
        return session

    def on_disconnect(self, connection_id: str) -> Optional[Session]:
        """Discard the session of a closed connection."""
        session = self.sessions.pop(connection_id, None)
        if session:
            logger.info(f"User disconnected: {connection_id}")
        return session

    def get(self, connection_id: str) -> Optional[Session]:
        return self.sessions.get(connection_id)

    def session_count(self) -> int:
        """Get total number of active sessions."""
        return len(self.sessions)
