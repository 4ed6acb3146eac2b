#!/usr/bin/env python3
"""
Billbank Entry Point

Starts the FastAPI server with the billbank system.
"""

import sys

from billbank.api import run_server
from billbank.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("🏦 Starting Billbank...")
    print("💰 Balances computed from confirmed transactions with Decimal precision")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()
    
    try:
        run_server()
    except KeyboardInterrupt:
        print("\n👋 Shutting down Billbank...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
