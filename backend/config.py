"""Debate Dueler settings read from the environment.

Server, store backend, moderators, deck limits and client timings.
"""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- Storage ---
STORE_BACKEND = os.getenv("STORE_BACKEND", "memory").lower()  # memory | redis
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")
REDIS_KEY_PREFIX = os.getenv("REDIS_KEY_PREFIX", "dueler")
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "5"))

# --- Identity ---
# comma-separated usernames granted full moderator permissions
MODERATORS = [u.strip() for u in os.getenv("MODERATORS", "").split(",") if u.strip()]
DEFAULT_COMMUNITY = os.getenv("DEFAULT_COMMUNITY", "debatedueler")
ADMIN_PERMISSIONS = ("all", "posts")
ANONYMOUS_USERNAME = "Anonymous"

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = 10  # max messages per second per client
MAX_WS_MESSAGE_SIZE = 16384  # bytes, decks can carry a few questions

# --- Deck limits ---
MAX_DELIVERED_QUESTIONS = 10
DEFAULT_TIME_LIMIT = 20
MIN_TIME_LIMIT = 5
MAX_TIME_LIMIT = 120
MAX_TITLE_LENGTH = 300
MAX_PROMPT_LENGTH = 500
MAX_CARD_TEXT_LENGTH = 200
MAX_CARDS_PER_QUESTION = 8

# --- Scoring ---
MIN_POINTS = 100
MAX_POINTS = 1000

# --- Client timing ---
REVEAL_DURATION_MS = 3500
SCORE_ANIMATION_MS = 750
REVEAL_POLL_MS = 50  # ~20 Hz
TIMER_STORAGE_PREFIX = "debateTimer"

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")  # empty = stdout only


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
