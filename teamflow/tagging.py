import re
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from .errors import TeamflowError, PersistenceError
from .models import TECHNICAL_TAGS, Row
from .parsing import parse_lenient
from .prompts import build_tag_prompt
from .store import Store

logger = logging.getLogger(__name__)

DEFAULT_TAGS = ["Backend"]
MAX_TAGS = 3

# Keyword fallback, checked in this order; each category matches whole words only
KEYWORD_TAGS = [
    ("Frontend", r"component|react|ui|ux|frontend|client|interface|design|style|css|tailwind|responsive|form|modal|page|layout"),
    ("Backend", r"api|endpoint|server|backend|route|middleware|logic|service|controller"),
    ("Database", r"database|db|table|schema|query|migration|supabase|postgres|sql|index"),
    ("Authentication", r"auth|login|register|oauth|token|session|user|sign|password|google|github"),
    ("DevOps", r"deploy|deployment|infrastructure|docker|ci|cd|build|environment|config|setup"),
    ("Testing", r"test|testing|unit|integration|spec|jest|cypress|qa|quality"),
    ("Security", r"security|secure|encryption|validation|sanitize|xss|csrf|vulnerability"),
    ("Design", r"design|ui|ux|mockup|prototype|wireframe|visual|graphic|theme"),
    ("API", r"api|rest|graphql|endpoint|request|response|webhook|integration"),
]
_KEYWORD_RES = [(tag, re.compile(rf"\b(?:{words})\b")) for tag, words in KEYWORD_TAGS]


def tag_by_keywords(title: str, description: Optional[str] = "") -> List[str]:
    text = f"{title} {description or ''}".lower()
    tags = [tag for tag, pattern in _KEYWORD_RES if pattern.search(text)]
    return (tags or list(DEFAULT_TAGS))[:MAX_TAGS]


def filter_tags(raw: Any) -> Optional[List[str]]:
    """
    Keep only labels from the fixed taxonomy, in the model's order.

    Returns None when ``raw`` is not a list at all (treated as a parse failure);
    an empty result after filtering becomes the default tag.
    """
    if not isinstance(raw, list):
        return None
    tags: List[str] = []
    for t in raw:
        if isinstance(t, str) and t in TECHNICAL_TAGS and t not in tags:
            tags.append(t)
    return tags[:MAX_TAGS] or list(DEFAULT_TAGS)


async def generate_task_tags(llm, title: str, description: Optional[str] = "") -> List[str]:
    """Ask the model for 1-3 taxonomy tags, falling back to keyword matching."""
    try:
        text = await llm.generate(build_tag_prompt(title, description))
    except TeamflowError as e:
        logger.warning(f"⚠️ Tagging via model failed ({e}); using keyword fallback.")
        return tag_by_keywords(title, description)

    tags = filter_tags(parse_lenient(text))
    if tags is None:
        logger.info(f"ℹ️ Unparseable tag response for '{title}'; using keyword fallback.")
        return tag_by_keywords(title, description)
    return tags


async def tag_task(store: Store, llm, task_id: str, title: str, description: Optional[str] = "") -> Row:
    tags = await generate_task_tags(llm, title, description)
    return await asyncio.to_thread(store.update_task, task_id, {"tags": tags})


@dataclass
class RetagResult:
    processed: int = 0
    successful: int = 0
    errors: int = 0
    updated_tasks: List[Row] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "processed": self.processed,
            "successful": self.successful,
            "errors": self.errors,
            "updated_tasks": self.updated_tasks,
        }


async def retag_team(store: Store, llm, team_id: str) -> RetagResult:
    """Re-tag every task of a team one after another, tallying failures."""
    tasks = await asyncio.to_thread(store.list_tasks, team_id)
    result = RetagResult(processed=len(tasks))
    for task in tasks:
        try:
            updated = await tag_task(store, llm, task["id"], task["title"], task.get("description"))
        except PersistenceError as e:
            logger.error(f"❌ Error updating tags for task {task['id']}: {e}")
            result.errors += 1
            continue
        result.updated_tasks.append(updated)
        result.successful += 1
    logger.info(f"🏷️ Re-tagged team {team_id}: {result.successful}/{result.processed} ok, {result.errors} errors")
    return result
