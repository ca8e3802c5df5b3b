import os
import logging
from typing import Optional
from dotenv import load_dotenv

from .models import DeadlinePolicy

load_dotenv()

# --- Configuration / Tuning ---
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
STORE_TIMEOUT = float(os.getenv("STORE_TIMEOUT", "30"))

# Pause after each task_created event so the board can animate the new card
TASK_CREATE_DELAY = float(os.getenv("TASK_CREATE_DELAY", "0.5"))


def parse_deadline_policy(raw: Optional[str]) -> DeadlinePolicy:
    """Resolve the configured subtask deadline policy; unknown names fail at startup."""
    try:
        return DeadlinePolicy((raw or DeadlinePolicy.SEQUENTIAL.value).strip().lower())
    except ValueError:
        allowed = ", ".join(p.value for p in DeadlinePolicy)
        raise ValueError(f"SUBTASK_DEADLINE_POLICY must be one of: {allowed} (got {raw!r})") from None


SUBTASK_DEADLINE_POLICY = parse_deadline_policy(os.getenv("SUBTASK_DEADLINE_POLICY"))

_seed = os.getenv("TASK_GEN_SEED")
RANDOM_SEED: Optional[int] = int(_seed) if _seed else None

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "8000"))


def configure_logging(level: Optional[str] = None) -> None:
    """Timestamped log lines: [YYYY-mm-dd HH:MM:SS] message"""
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
