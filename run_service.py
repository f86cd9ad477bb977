#!/usr/bin/env python3
"""
Standalone uvicorn runner for VISO.

Usage:
    python run_service.py

Environment Variables:
    PORT: Server port (default: 3010)
    ENVIRONMENT: 'development' or 'production' (default: development)

Variables in a local .env file are loaded first. In development mode,
auto-reload is enabled.
"""
import os
import sys

import uvicorn
from dotenv import load_dotenv


def main():
    """Run the VISO FastAPI server."""
    load_dotenv()

    port = int(os.getenv("PORT", "3010"))
    environment = os.getenv("ENVIRONMENT", "development")
    reload = environment != "production"

    print(f"Starting VISO on port {port}")
    print(f"Environment: {environment}")
    print(f"Auto-reload: {reload}")

    uvicorn.run(
        "viso.main:app",
        host="0.0.0.0",
        port=port,
        reload=reload,
    )


if __name__ == "__main__":
    sys.exit(main() or 0)
