"""Centralized configuration: every env var is read here."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "4000"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = int(os.getenv("WS_RATE_LIMIT_PER_SEC", "10"))  # max messages per second per client
MAX_WS_MESSAGE_SIZE = 4096  # bytes

# --- Game ---
GAME_PIN = os.getenv("GAME_PIN", "1910")
QUESTION_TIME_LIMIT_MS = int(os.getenv("QUESTION_TIME_LIMIT_MS", "15000"))
DEADLINE_BUFFER_MS = int(os.getenv("DEADLINE_BUFFER_MS", "1000"))  # network slack before auto-reveal
REVEAL_GRACE_MS = int(os.getenv("REVEAL_GRACE_MS", "3000"))  # hold results before host may advance
MAX_NAME_LENGTH = 15
MAX_PLAYERS = int(os.getenv("MAX_PLAYERS", "100"))
QUESTION_BANK_FILE = os.getenv("QUESTION_BANK_FILE", "")  # empty = built-in questions

# --- Policy switches ---
SCORING_FORMULAS = ("half_floor", "linear")
HOST_POLICIES = ("reject", "takeover")
NAME_MATCH_MODES = ("casefold", "exact")

SCORING_FORMULA = os.getenv("SCORING_FORMULA", "half_floor").lower()
HOST_POLICY = os.getenv("HOST_POLICY", "reject").lower()
NAME_MATCH = os.getenv("NAME_MATCH", "casefold").lower()

if SCORING_FORMULA not in SCORING_FORMULAS:
    raise ValueError(f"SCORING_FORMULA must be one of: {', '.join(SCORING_FORMULAS)}")
if HOST_POLICY not in HOST_POLICIES:
    raise ValueError(f"HOST_POLICY must be one of: {', '.join(HOST_POLICIES)}")
if NAME_MATCH not in NAME_MATCH_MODES:
    raise ValueError(f"NAME_MATCH must be one of: {', '.join(NAME_MATCH_MODES)}")

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
