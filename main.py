#!/usr/bin/env python3
"""
NZT Chat
Decision-assistant relay with key rotation and session recovery.
"""

import logging

import uvicorn

from config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    print("@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@")
    print("                                         ")
    print("            NZT chat launcher             ")
    print("                                         ")
    print("@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@")
    print("")
    print(f"API Documentation: http://localhost:{settings.port}/docs")
    print(f"Health Check: http://localhost:{settings.port}/api/health")
    print("")
    print("Environment variables needed:")
    print("  GEMINI_API_KEYS (comma separated) or API_KEY, API_KEY_1 .. API_KEY_9")
    print(f"  {len(settings.api_keys)} credential(s) found")
    print("")

    uvicorn.run(
        "api:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
