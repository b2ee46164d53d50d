#!/usr/bin/env python3
"""
adsync API Startup Script

Starts the adsync FastAPI server (OAuth, sync, webhook and alert endpoints).
"""

import sys
from pathlib import Path

import uvicorn


def main():
    """Start the adsync API server."""
    print("Starting adsync API Server...")
    print("Endpoints:")
    print("   OAuth:    /integration-oauth, /google-oauth-callback, /meta-oauth-callback")
    print("   Sync:     /ga4-sync, /google-ads-sync, /search-console-sync, /meta-ads-sync")
    print("   Webhooks: /google-ads-webhook, /meta-ads-webhook, /alert-webhook")
    print("")
    print("Documentation will be available at:")
    print("   Swagger UI:  http://localhost:8000/docs")
    print("")

    env_file = Path(".env")
    if not env_file.exists():
        print("WARNING: No .env file found!")
        print("   Run generate_keys.py or create a .env with at least:")
        print("   TOKEN_ENCRYPTION_KEY=...")
        print("   OAUTH_STATE_SECRET=...")
        print("")

    try:
        uvicorn.run(
            "adsync.main:app",
            host="0.0.0.0",
            port=8000,
            reload=True,
            reload_dirs=["adsync"],
            log_level="info"
        )
    except KeyboardInterrupt:
        print("\nShutting down adsync API server...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
