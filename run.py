#!/usr/bin/env python3
"""
Corebank Entry Point

Starts the FastAPI server with host and port taken from COREBANK_* settings.
"""

import sys

from corebank.api import run_server
from corebank.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Corebank API...")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        print("\nShutting down Corebank API...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
