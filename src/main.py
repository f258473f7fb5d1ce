"""Application entry point.

RUN_MODE=integrated (default) serves the relay API and the NiceGUI report
page from one uvicorn server on PORT. RUN_MODE=separate starts the API in a
child process on PORT and runs the UI on UI_PORT; the UI reaches the API
through API_BASE_URL or localhost:PORT.
"""

import logging
import os
import subprocess
import sys

from dotenv import load_dotenv

# Load environment variables before any other imports that might need them
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

from src.assistant.config import RelayConfig, get_relay_config  # noqa: E402


def run_integrated(config: RelayConfig) -> None:
    """Mount the report page on the API app and serve both on one port."""
    import uvicorn
    from nicegui import ui

    from src.api.app import create_app
    from src.ui import chat_page  # noqa: F401 - Registers the page

    app = create_app()
    ui.run_with(
        app,
        title="ecoSure",
        favicon="🌿",
        storage_secret=os.getenv("NICEGUI_STORAGE_SECRET", "ecosure-secret"),
    )

    logger.info(f"Serving relay API and report UI on http://localhost:{config.port}")
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


def run_separate(config: RelayConfig) -> None:
    """Run the API as a child process and the UI in this one."""
    from src.ui.chat_page import main as run_ui

    api = subprocess.Popen(
        [
            sys.executable,
            "-m",
            "uvicorn",
            "src.api.app:app",
            "--host",
            config.host,
            "--port",
            str(config.port),
        ]
    )
    logger.info(f"Relay API starting on http://localhost:{config.port} (pid {api.pid})")
    try:
        run_ui()
    finally:
        api.terminate()
        api.wait()


def main() -> None:
    mode = os.getenv("RUN_MODE", "integrated").lower()
    config = get_relay_config()

    logger.info(f"Starting ecoSure in {mode} mode")

    if mode == "separate":
        run_separate(config)
    else:
        run_integrated(config)


if __name__ == "__main__":
    main()
