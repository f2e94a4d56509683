"""
Remark Parser

Decodes a changelog's free-text feedback payload into notes and change
details. Two encodings exist in stored data:

1. Structured: a JSON object {"notes": str, "changes": str (optional)}
2. Legacy plain text: notes and change details joined by a separator phrase

Strategies are tried in that order; the first that yields a result wins and
the fallback treats the whole text as notes. No strategy raises.

Known gap: a separator phrase not in LEGACY_SEPARATORS falls through to the
whole-text fallback.
"""

import json
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger("remark_parser")

# Verbatim from historically written records. Order is irrelevant to the
# result: the separator found at the earliest index wins.
LEGACY_SEPARATORS = (
    " - Changes needed:",
    " - Changes needed",
    "\nChanges Required:",
    "\nChanges Required",
    "Changes Required:",
    "Changes required:",
    " - Requested changes:",
)


@dataclass(frozen=True)
class ParsedRemark:
    notes: str
    change_details: Optional[str] = None


def raw_text(remark: Optional[str], description: Optional[str]) -> str:
    """The text to parse: remark, falling back to description when remark is empty.

    Non-text values count as empty.
    """
    if isinstance(remark, str) and remark.strip():
        return remark
    return description if isinstance(description, str) else ""


def parse_structured(raw: str) -> Optional[ParsedRemark]:
    try:
        obj = json.loads(raw)
    except RecursionError:
        logger.debug("Remark nested too deeply for structured decoding")
        return None
    except (ValueError, TypeError):
        return None
    if not isinstance(obj, dict):
        return None

    notes = obj.get("notes")
    changes = obj.get("changes")
    return ParsedRemark(
        notes=notes if isinstance(notes, str) else "",
        change_details=changes if isinstance(changes, str) and changes.strip() else None,
    )


def parse_legacy(raw: str) -> Optional[ParsedRemark]:
    best_index = -1
    best_separator = None
    for separator in LEGACY_SEPARATORS:
        index = raw.find(separator)
        if index == -1:
            continue
        # Earliest index wins; on a tie the longer phrase is the complete one
        if (best_index == -1 or index < best_index
                or (index == best_index and len(separator) > len(best_separator))):
            best_index = index
            best_separator = separator

    if best_separator is None:
        return None
    return ParsedRemark(
        notes=raw[:best_index].strip(),
        change_details=raw[best_index + len(best_separator):].strip() or None,
    )


def parse_plain(raw: str) -> Optional[ParsedRemark]:
    return ParsedRemark(notes=raw)


PARSER_STRATEGIES: List[Callable[[str], Optional[ParsedRemark]]] = [
    parse_structured,
    parse_legacy,
    parse_plain,
]


def parse_remark(remark: Optional[str], description: Optional[str] = None) -> ParsedRemark:
    """Parse a record's feedback payload. Never raises."""
    raw = raw_text(remark, description)
    if not raw.strip():
        return ParsedRemark(notes="")

    for strategy in PARSER_STRATEGIES:
        parsed = strategy(raw)
        if parsed is not None:
            return parsed
    return ParsedRemark(notes=raw)


def encode_remark(notes: str, changes: Optional[str] = None) -> str:
    """Structured encoding written for new feedback records."""
    payload = {"notes": notes}
    if changes:
        payload["changes"] = changes
    return json.dumps(payload)
