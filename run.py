"""Local development entry point for the BugFlow API.

Usage:
    python run.py

Reads environment from .env (see .env.example), builds the app for
FLASK_ENV (default "development") and serves it on port 5000.
"""

import os

from dotenv import load_dotenv

load_dotenv()  # Load .env before the config classes read os.environ

from bugflow import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
