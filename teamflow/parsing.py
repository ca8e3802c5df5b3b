"""
Lenient parsing of model output.

Gemini usually answers with JSON, but not always: the payload may be wrapped in
a markdown fence, preceded by prose and a ``SUGGESTIONS:`` label, or written as
a JS object literal (bare keys, single quotes, trailing commas). The repair
pipeline below turns such text into strict JSON before a single strict parse.
Parsing is all-or-nothing: when the repaired text still does not parse, the
result is ``None``, never a partial structure.

Repairs only touch text outside string literals, so an apostrophe or a colon
inside a value survives untouched and already-valid JSON parses to the same
structure as ``json.loads`` would give.
"""
import re
import json
import logging
from typing import List, Dict, Any, Optional, Tuple
from pydantic import ValidationError as SchemaError

from .errors import UpstreamGenerationError
from .models import StackSuggestion, JSONValue

logger = logging.getLogger(__name__)

SUGGESTIONS_MARKER = "SUGGESTIONS:"

_FENCE_RE = re.compile(r"^\s*```[A-Za-z0-9_+-]*[ \t]*\n?(.*?)\n?[ \t]*```\s*$", re.DOTALL)
_FENCE_LINE_RE = re.compile(r"```[A-Za-z0-9_+-]*\n?")
_BARE_KEY_RE = re.compile(r"(^|[,{\s])([A-Za-z0-9_$]+)\s*:")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_SUGGESTIONS_RE = re.compile(r"SUGGESTIONS:\s*(?:```[A-Za-z]*\s*)?(\[[\s\S]*?\](?:\s*```)?(?:[ \t]*\n|\s*$))")
_INLINE_RE = re.compile(r"STACK_ADD:\s*(\{[\s\S]*?\})")

CODE, DOUBLE, SINGLE = "code", "double", "single"


def _segments(text: str) -> List[Tuple[str, str]]:
    """Split text into code and quoted-string runs; quoted runs keep their quotes."""
    out: List[Tuple[str, str]] = []
    i, start, n = 0, 0, len(text)
    while i < n:
        ch = text[i]
        if ch in ('"', "'"):
            if i > start:
                out.append((CODE, text[start:i]))
            j = i + 1
            while j < n and text[j] != ch:
                j += 2 if text[j] == "\\" else 1
            end = min(j + 1, n)
            out.append((DOUBLE if ch == '"' else SINGLE, text[i:end]))
            i = start = end
        else:
            i += 1
    if start < n:
        out.append((CODE, text[start:]))
    return out


def _map_segments(text: str, kind: str, fn) -> str:
    return "".join(fn(chunk) if k == kind else chunk for k, chunk in _segments(text))


# -------------------------
# Repair steps (applied in this order)
# -------------------------
def strip_code_fence(text: str) -> str:
    """Remove a ```lang ... ``` wrapper when it encloses the whole text."""
    m = _FENCE_RE.match(text)
    return m.group(1).strip() if m else text.strip()


def isolate_payload(text: str, marker: Optional[str] = None) -> str:
    """
    Cut out the bracketed payload following ``marker``.

    Takes the first '[' or '{' after the marker and the last matching closer
    in the remaining text. Without a marker, or when the marker or brackets are
    missing, the text is returned unchanged.
    """
    if not marker:
        return text
    idx = text.find(marker)
    if idx == -1:
        return text
    rest = _FENCE_LINE_RE.sub("", text[idx + len(marker):])
    openers = [p for p in (rest.find("["), rest.find("{")) if p != -1]
    if not openers:
        return text
    first = min(openers)
    closer = "]" if rest[first] == "[" else "}"
    last = rest.rfind(closer)
    if last < first:
        return text
    return rest[first:last + 1]


def quote_bare_keys(text: str) -> str:
    return _map_segments(text, CODE, lambda s: _BARE_KEY_RE.sub(r'\1"\2":', s))


def _single_to_double(chunk: str) -> str:
    inner = chunk[1:-1] if len(chunk) > 1 and chunk.endswith("'") else chunk[1:]
    inner = inner.replace("\\'", "'").replace('\\"', '"').replace('"', '\\"')
    return f'"{inner}"'


def normalize_single_quotes(text: str) -> str:
    return _map_segments(text, SINGLE, _single_to_double)


def strip_trailing_commas(text: str) -> str:
    return _map_segments(text, CODE, lambda s: _TRAILING_COMMA_RE.sub(r"\1", s))


def repair_json(text: str, marker: Optional[str] = None) -> str:
    s = strip_code_fence(text)
    s = isolate_payload(s, marker)
    s = quote_bare_keys(s)
    s = normalize_single_quotes(s)
    s = strip_trailing_commas(s)
    return s


def parse_lenient(text: str, marker: Optional[str] = None) -> Optional[JSONValue]:
    """Repair and strictly parse ``text``; returns None when it still is not JSON."""
    if not text or not text.strip():
        return None
    try:
        return json.loads(repair_json(text, marker))
    except (json.JSONDecodeError, ValueError):
        return None


def parse_json_array(text: str, what: str = "items") -> List[Any]:
    """Parse a generated list; anything other than a JSON array is an upstream failure."""
    parsed = parse_lenient(text)
    if not isinstance(parsed, list):
        logger.warning(f"⚠️ Could not parse {what} from model output ({len(text or '')} chars)")
        raise UpstreamGenerationError("Failed to parse AI response")
    return parsed


# -------------------------
# Chat suggestions
# -------------------------
def _inline_suggestions(full: str) -> List[Dict[str, Any]]:
    found = []
    for m in _INLINE_RE.finditer(full):
        parsed = parse_lenient(m.group(1))
        if not isinstance(parsed, dict):
            continue
        if not all(parsed.get(k) for k in ("category", "field", "value")):
            continue
        try:
            suggestion = StackSuggestion.model_validate(parsed)
        except SchemaError:
            continue
        found.append(suggestion.model_dump(exclude_none=True))
    return found


def extract_suggestions(full: str) -> Tuple[List[Dict[str, Any]], str]:
    """
    Pull structured stack suggestions out of a finished chat reply.

    Returns ``(suggestions, clean_text)``. A trailing ``SUGGESTIONS: [...]``
    block wins; only when it yields nothing are inline ``STACK_ADD: {...}``
    markers collected, each parsed on its own and kept only when it has a
    category, field and value. The matched structured text is removed from the
    reply.
    """
    suggestions: List[Dict[str, Any]] = []
    block = _SUGGESTIONS_RE.search(full)
    if block:
        parsed = parse_lenient(block.group(0), marker=SUGGESTIONS_MARKER)
        if isinstance(parsed, list):
            suggestions = [s for s in parsed if isinstance(s, dict)]
        else:
            logger.info("ℹ️ SUGGESTIONS block present but unparseable; ignoring it.")

    if not suggestions:
        suggestions = _inline_suggestions(full)

    if block:
        clean = full.replace(block.group(0), "").strip()
    else:
        clean = _INLINE_RE.sub("", full).strip()
    return suggestions, clean
