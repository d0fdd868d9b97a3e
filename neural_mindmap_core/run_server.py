# neural_mindmap_core/run_server.py

import os

import uvicorn

from neural_mindmap_core.custom_logger import logger


def main():
    """Run the Neural Mind Map API server"""
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "5020"))

    logger.info("run_server", f"Starting Neural Mind Map API server at {host}:{port}")

    uvicorn.run(
        "neural_mindmap_core.api.server:app",
        host=host,
        port=port,
        reload=False,
        workers=1      # Maps live in process memory
    )


if __name__ == "__main__":
    main()
