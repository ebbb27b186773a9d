"""
Main entry point for the EquateGPT chat server.

Can be called with: python -m equate_chat

Automatically opens the app in your browser once the server is reachable.
Disable with --no-open or EQUATE_CHAT_NO_BROWSER=1.
"""

import argparse
import logging
import os
import sys
import threading
import time
import urllib.error
import urllib.request
import webbrowser

import uvicorn

from .app import create_app
from .config import ConfigurationError, Settings

logger = logging.getLogger(__name__)


def _open_when_ready(url: str, timeout: float = 15.0, interval: float = 0.2):
    """Open the browser once the server answers (best-effort)."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            with urllib.request.urlopen(url, timeout=1):
                pass
        except (urllib.error.URLError, TimeoutError, OSError):
            time.sleep(interval)
            continue
        try:
            webbrowser.open(url, new=1)
        except webbrowser.Error:
            logger.info(f"Could not open a browser; visit {url}")
        return


def main(argv=None):
    """Main entry point for the EquateGPT chat server."""
    parser = argparse.ArgumentParser(
        description="EquateGPT - math tutoring chat with streamed, tool-assisted answers"
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Interface to bind (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=3000,
        help="Port to run the server on (default: 3000)",
    )
    parser.add_argument(
        "--no-open",
        action="store_true",
        help="Do not automatically open the browser",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    app = create_app(settings)

    logger.info("Starting chat server...")
    url = f"http://localhost:{args.port}"
    logger.info(f"Open {url} in your browser to start chatting")

    should_open = not args.no_open and os.environ.get("EQUATE_CHAT_NO_BROWSER") != "1"
    if should_open:
        threading.Thread(target=_open_when_ready, args=(url,), daemon=True).start()
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
