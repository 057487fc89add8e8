"""Configuration for the Parliament of Experts."""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")

# Model provider (any OpenAI-compatible chat-completions endpoint)
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY") or os.getenv("OPENAI_API_KEY")
OPENROUTER_SITE_URL = os.getenv("OPENROUTER_SITE_URL", "http://localhost")
OPENROUTER_APP_TITLE = os.getenv("OPENROUTER_APP_TITLE", "Parliament of Experts")
LLM_API_URL = os.getenv("LLM_API_URL", "https://openrouter.ai/api/v1/chat/completions")

# Fast model - expert proposals, question synthesis, expert selection
FAST_MODEL = os.getenv("PARLIAMENT_FAST_MODEL", "openai/gpt-4o-mini")
FAST_MODEL_MAX_TOKENS = 400

# Deep model - deep analysis, chair summary, training process
DEEP_MODEL = os.getenv("PARLIAMENT_DEEP_MODEL", "openai/gpt-4.1-mini")
DEEP_MODEL_MAX_TOKENS = 1500

DEFAULT_TEMPERATURE = 0.7
CHAIR_TEMPERATURE = 0.8
CHAIR_MAX_TOKENS = 1500
CONTENT_ANALYSIS_MAX_TOKENS = 650
TRAINING_MAX_TOKENS = 900

# Every model call is abandoned after this many seconds
GENERATION_TIMEOUT = float(os.getenv("PARLIAMENT_GENERATION_TIMEOUT", "45"))

# Conversation flow
MAX_EXPLORATION_ROUNDS = 3
CHAIR_EXPERT_COUNT = 3
MIN_MEANINGFUL_USER_MESSAGES = 3

# Transcript windows (messages) and truncation (characters) per call site
FIRST_QUESTION_HISTORY_MESSAGES = 15
FIRST_QUESTION_SUMMARY_CHARS = 3000
PROPOSAL_HISTORY_MESSAGES = 8
PROPOSAL_SUMMARY_CHARS = 800
SYNTHESIS_SUMMARY_CHARS = 2000
RESUME_HISTORY_MESSAGES = 10
RESUME_SUMMARY_CHARS = 1500
DEEP_ANALYSIS_SUMMARY_CHARS = 4000
CHAIR_SUMMARY_CHARS = 4000
EXPERT_SELECTION_SUMMARY_CHARS = 2500
CONTENT_ANALYSIS_SUMMARY_CHARS = 5000

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "PARLIAMENT_CORS_ORIGINS", "http://localhost:5173,http://localhost:3000"
    ).split(",")
    if origin.strip()
]
