#!/usr/bin/env python
"""Entry point for the FastAPI backend server.

Usage:
    python api_server.py [--port 8000] [--host 0.0.0.0] [--verbose]
"""

import argparse

import uvicorn

from agent.logging import attach_log_file, setup_logging
from api.app import create_app

app = create_app()

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="datachat FastAPI server")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--host", type=str, default="0.0.0.0")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug-level console logging")
    args = parser.parse_args()

    setup_logging(verbose=args.verbose)
    attach_log_file("server")

    uvicorn.run(
        "api_server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
