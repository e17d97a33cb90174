#!/usr/bin/env python3
"""
Lending Engine Entry Point

Starts the FastAPI server with the installment scheduling and payment
reconciliation engine.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from lending_core.api import run_server
from lending_core.config import get_config


if __name__ == "__main__":
    config = get_config()

    print("Starting Lending Engine...")
    print(f"Storage: {'SQLite at ' + config.database_path if config.use_sqlite else 'in-memory'}")
    print(f"Month overflow policy: {config.month_overflow_policy}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=False
        )
    except KeyboardInterrupt:
        print("\nShutting down Lending Engine...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
