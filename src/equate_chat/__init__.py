"""
EquateGPT - a math tutoring chat served over WebSockets.

The model streams its answer token by token and may call a numerical
expression evaluator in the middle of a response before continuing.
"""

__version__ = "0.1.0"

from .agent import SEPARATOR, Agent, Environment, ToolLoopExceededError
from .config import ConfigurationError, Settings
from .messages import ConversationState, Message
from .session_manager import Session, SessionManager, TurnTimeoutError
from .tool_registry import ToolDescriptor, ToolRegistry, callable_to_tool_schema

__all__ = [
    "SEPARATOR",
    "Agent",
    "ConfigurationError",
    "ConversationState",
    "Environment",
    "Message",
    "Session",
    "SessionManager",
    "Settings",
    "ToolDescriptor",
    "ToolLoopExceededError",
    "ToolRegistry",
    "TurnTimeoutError",
    "callable_to_tool_schema",
]
