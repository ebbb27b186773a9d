import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse

from .agent import Agent, Environment
from .config import Settings
from .messages import Message
from .model import ChatModel, OpenAIChatModel
from .plugins.math_plugin import MathPlugin
from .plugins.ui_plugin import UIPlugin
from .session_manager import Session, SessionManager

logger = logging.getLogger(__name__)

# Single page app served for every path that is not a static file
STATIC_DIR = Path(__file__).parent / "static"

GREETING = (
    "Hi! I'm EquateGPT, a math-savvy assistant ready to help you solve equations, "
    "explore algebra, and tackle any math problem step by step."
)


def get_default_system_prompt() -> str:
    """Get the default system prompt."""
    return r"""You're EquateGPT, a math-savvy assistant ready to help users solve equations, explore algebra, and tackle any math problem step by step.
You're a sophisticated AI, but you're not perfect (try to be as perfect as possible). Math doesn't have much room for mistakes. Be careful!
Math is precise, so if you ever notice that you've erred, don't be afraid to apologize and reveal it!

Your answers are rendered as Markdown. Write math as LaTeX using \( ... \) for inline math and \[ ... \] for display math."""


def create_environment() -> Environment:
    """Build the tools and system prompt shared by every session."""
    return Environment(get_default_system_prompt(), plugins=[MathPlugin()])


def initial_messages(env: Environment):
    return [Message.system(env.instructions()), Message.assistant(GREETING)]


async def message_loop(session: Session, ui_plugin: UIPlugin):
    """Runs the queued prompts of one connection, one turn at a time."""
    while True:
        prompt = await ui_plugin.message_queue.get()
        ui_plugin.is_running = True
        try:
            error = None
            try:
                response = await session.submit(prompt, ui_plugin.send_chunk)
            except Exception as e:
                error = e
                logger.error(
                    f"ERROR: Error processing message: {e}",
                    extra={
                        "structured": {
                            "log_type": "turn_error",
                            "session_id": session.session_id,
                            "error": repr(e),
                        }
                    },
                )

            try:
                if error is not None:
                    await ui_plugin.send_error(error)
                else:
                    await ui_plugin.send_reply(response)
            except Exception as e:
                # The next queued prompt is still served
                logger.error(f"ERROR: Failed to send response: {e}")
        finally:
            ui_plugin.is_running = False


async def handle_websocket_message(message_data, ui_plugin: UIPlugin):
    """Route one frame received from the client."""
    if not isinstance(message_data, dict):
        logger.warning(f"SYSTEM: Ignoring malformed frame: {message_data!r}")
        return
    if message_data.get("type") != "chat":
        logger.warning(f"SYSTEM: Ignoring unknown frame type: {message_data.get('type')!r}")
        return

    prompt = message_data.get("content")
    if not isinstance(prompt, str) or not prompt.strip():
        logger.warning("SYSTEM: Ignoring empty prompt")
        return
    await ui_plugin.add_message(prompt)


async def handle_websocket_session(websocket: WebSocket, session_manager: SessionManager):
    """Helper function to handle a websocket session."""
    connection_id = str(uuid.uuid4())
    session = session_manager.on_connect(connection_id)

    ui_plugin = UIPlugin()
    await ui_plugin.set_websocket(websocket)

    processing_task = asyncio.create_task(message_loop(session, ui_plugin))

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message_data = json.loads(data)
            except json.JSONDecodeError as e:
                logger.warning(f"SYSTEM: Ignoring invalid JSON frame: {e}")
                continue
            await handle_websocket_message(message_data, ui_plugin)
    except WebSocketDisconnect:
        logger.info(f"SYSTEM: Client disconnected: {connection_id}")
    except Exception as e:
        logger.error(f"ERROR: WebSocket error: {e}")
    finally:
        # The turn in flight is abandoned; its output can no longer be delivered
        ui_plugin.websocket = None
        processing_task.cancel()
        try:
            await processing_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"ERROR: Message loop failed: {e}")
        session_manager.on_disconnect(connection_id)


def create_app(
    settings: Optional[Settings] = None,
    model: Optional[ChatModel] = None,
    env: Optional[Environment] = None,
) -> FastAPI:
    """Create the chat application.

    Parameters
    ----------
    settings : Settings, optional
        Loaded from the environment when not given. Raises
        ``ConfigurationError`` when the API key is missing.
    model : ChatModel, optional
        The model used by every session; an ``OpenAIChatModel`` built from
        ``settings`` by default.
    env : Environment, optional
        Tools and system prompt; ``create_environment()`` by default.
    """
    if settings is None:
        settings = Settings.from_env()
    if model is None:
        model = OpenAIChatModel.from_settings(settings)
    if env is None:
        env = create_environment()

    app = FastAPI(title="EquateGPT")
    app.state.settings = settings
    app.state.environment = env
    app.state.session_manager = SessionManager(
        create_agent=lambda state: Agent(
            env, model, state, max_tool_rounds=settings.max_tool_rounds
        ),
        initial_messages=lambda: initial_messages(env),
        turn_timeout=settings.turn_timeout,
    )

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await websocket.accept()
        await handle_websocket_session(websocket, app.state.session_manager)

    @app.get("/{path:path}")
    async def get(path: str):
        return FileResponse(str(resolve_static_path(path)))

    return app


def resolve_static_path(path: str) -> Path:
    """Map a request path to a file under STATIC_DIR, falling back to index.html."""
    root = STATIC_DIR.resolve()
    candidate = (root / path).resolve()
    if candidate != root and root in candidate.parents and candidate.is_file():
        return candidate
    return root / "index.html"
