#!/usr/bin/env python3
"""
Account Service Entry Point

Starts the FastAPI server with host and port taken from the ACCOUNTS_
environment configuration.
"""

import sys

import uvicorn

from account_service.config import get_config


def run_server(host: str, port: int, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "account_service.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )


if __name__ == "__main__":
    config = get_config()
    print(f"Starting Account Service on http://{config.api_host}:{config.api_port}")
    print(f"Documentation at: http://{config.api_host}:{config.api_port}/docs")

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        print("\nShutting down Account Service...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
