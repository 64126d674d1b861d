"""
apps/services/sourcing/prompts.py

Prompt templates for the AI stages.

Templates are markdown files in the prompts/ directory next to this module,
with {{KEY}} placeholders.
"""
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from libs.core.exceptions import TemplateMissing

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).parent / "prompts"

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def render_template(template: str, values: Mapping[str, Any]) -> str:
    """
    Substitute {{KEY}} placeholders.

    Missing (or None) keys render as "[KEY not found]". Pure.
    """
    def _substitute(match: re.Match) -> str:
        key = match.group(1)
        value = values.get(key)
        if value is None:
            return f"[{key} not found]"
        return str(value)

    return _PLACEHOLDER.sub(_substitute, template)


@lru_cache(maxsize=None)
def _read_template(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def load_template(name: str, prompts_dir: Path = PROMPTS_DIR) -> str:
    """
    Read a template by name (without extension).

    Raises:
        TemplateMissing: The template file cannot be read
    """
    path = prompts_dir / f"{name}.md"
    try:
        return _read_template(path)
    except OSError as e:
        logger.error(f"[Prompts] Cannot read template '{name}': {e}")
        raise TemplateMissing(name, context={"path": str(path)}) from e
