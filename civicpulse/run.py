#!/usr/bin/env python3
"""
Quick runner for CivicPulse Service
===================================

Usage:
    python -m civicpulse.run
"""

import os

import uvicorn

if __name__ == "__main__":
    print("Starting CivicPulse Service...")
    print("API docs: http://localhost:8000/docs")
    print("Health:   http://localhost:8000/health")
    print()

    uvicorn.run(
        "civicpulse.api:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
        reload=os.environ.get("RELOAD", "true").lower() == "true",
    )
