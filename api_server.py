#!/usr/bin/env python3
"""
API Server - standalone FastAPI server for the journal engine.
Serves the /api routes and the Supabase auth webhook.
"""

import os

import uvicorn

from utils.logger import logger

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    logger.info("🚀 Starting journal engine API on port %s", port)
    uvicorn.run("api:app", host="0.0.0.0", port=port)
