"""
Main entrypoint: serves the API with the background scheduler inside.

Usage:
    python -m starshelf setup                 # one-time: register a GitHub token
    python -m starshelf sync --user-id 1      # one foreground star sync
    python -m starshelf                       # API + scheduler on :8000
"""
import logging
import os
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _run_setup() -> None:
    from starshelf.scripts.setup import run_setup
    run_setup()


def _run_sync(argv) -> None:
    from starshelf.scripts.sync_once import main
    main(argv)


def _run_server() -> None:
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))
    logger.info("Starting API on %s:%d", host, port)
    uvicorn.run("starshelf.api.main:app", host=host, port=port)


if __name__ == "__main__":
    # Dispatch on first argument: `setup`, `sync ...`, or nothing for the server
    if len(sys.argv) > 1 and sys.argv[1] == "setup":
        _run_setup()
    elif len(sys.argv) > 1 and sys.argv[1] == "sync":
        _run_sync(sys.argv[2:])
    else:
        _run_server()
