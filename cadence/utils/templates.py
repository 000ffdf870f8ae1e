"""
Message template rendering.
Templates use {variable} substitution ({first_name}, {name}, {company}, ...).
Spintax groups like {Hi|Hello|Hey} pick one alternative: randomly when the
campaign humanizes content, otherwise always the first one.
"""
import logging
import random
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

# A brace group containing at least one "|" and no nested braces
SPINTAX_PATTERN = re.compile(r"\{([^{}]*\|[^{}]*)\}")

# Upper bound on nested spintax resolution passes
MAX_SPINTAX_PASSES = 10


class SafeDict(dict):
    """Dict that returns '{key}' for missing keys instead of raising KeyError."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def resolve_spintax(text: str, humanize: bool, rng: Optional[random.Random] = None) -> str:
    """Collapse every spintax group to a single alternative (innermost groups first)."""
    if not text:
        return text
    chooser = rng or random

    def _pick(match: re.Match) -> str:
        options = match.group(1).split("|")
        return chooser.choice(options) if humanize else options[0]

    for _ in range(MAX_SPINTAX_PASSES):
        text, replaced = SPINTAX_PATTERN.subn(_pick, text)
        if not replaced:
            break
    return text


def lead_variables(lead: Any) -> dict:
    """Template variables available to every message body."""
    name = (getattr(lead, "name", None) or "").strip()
    first_name = name.split()[0] if name else ""
    return {
        "name": name,
        "first_name": first_name,
        "company": getattr(lead, "company", None) or "",
        "email": getattr(lead, "email", None) or "",
        "phone": getattr(lead, "phone", None) or "",
    }


def render_message(
    body_template: str,
    lead: Any,
    humanize: bool = False,
    rng: Optional[random.Random] = None,
) -> str:
    """Render a step body for one lead. Unknown placeholders are left as-is."""
    text = resolve_spintax(body_template or "", humanize, rng)
    try:
        return text.format_map(SafeDict(lead_variables(lead)))
    except (ValueError, IndexError, AttributeError) as e:
        logger.debug("Template rendering failed for key substitution: %s", str(e))
        return text
