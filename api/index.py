"""
Serverless entry point for the Project Feedback API.

The hosting platform imports this module once per cold start and calls the
module-level ``app`` as a WSGI callable for each request.

DATABASE SELECTION:
  - With D1_ACCOUNT_ID, D1_DATABASE_ID and D1_API_TOKEN set, every query goes
    to the Cloudflare D1 database through its HTTP API.
  - Without them the function falls back to SQLite in /tmp. The function
    filesystem is ephemeral, so that data is lost on cold starts; use it only
    to try the API out.

Routes are served without the /api prefix unless SERVERLESS_API_PREFIX is
set, and CORS is open to any origin unless SERVERLESS_CORS_ORIGINS narrows it.
"""

import sys
import os

# Make the project root importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import create_app
from config import ServerlessConfig

app = create_app(ServerlessConfig)
