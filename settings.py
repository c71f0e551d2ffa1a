"""
Runtime configuration

Values come from the process environment; a local .env file is loaded first
so development machines behave like the deployed service.
"""

import os
from typing import Dict, List

from dotenv import load_dotenv

load_dotenv()

PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", 10))

ALLOWED_EMAIL_DOMAIN = os.getenv("ALLOWED_EMAIL_DOMAIN", "oneorigin.us").lstrip("@").lower()
LOCAL_CACHE_PATH = os.getenv("LOCAL_CACHE_PATH") or None

# Firebase web config handed to the browser, keyed by the client SDK's names
FIREBASE_ENV_KEYS = {
    "apiKey": "FIREBASE_API_KEY",
    "authDomain": "FIREBASE_AUTH_DOMAIN",
    "projectId": "FIREBASE_PROJECT_ID",
    "storageBucket": "FIREBASE_STORAGE_BUCKET",
    "messagingSenderId": "FIREBASE_MESSAGING_SENDER_ID",
    "appId": "FIREBASE_APP_ID",
}


def gemini_api_key() -> str:
    return os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or ""


def admin_emails() -> List[str]:
    raw = os.getenv("ADMIN_EMAILS", "")
    return [e.strip().lower() for e in raw.split(",") if e.strip()]


def firebase_config() -> Dict[str, str]:
    return {key: (os.getenv(env) or "").strip() for key, env in FIREBASE_ENV_KEYS.items()}


def firebase_project_id() -> str:
    return (os.getenv("FIREBASE_PROJECT_ID") or os.getenv("GOOGLE_CLOUD_PROJECT") or "").strip()
