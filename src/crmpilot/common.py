"""Common utility functions for the project."""

import json
import re
from enum import Enum
from typing import Any

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.+?)\s*```$", re.DOTALL)


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color.value}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end


def strip_code_fences(content: str) -> str:
    """
    Clean up a JSON answer returned by an LLM.

    Only surrounding whitespace, control characters and a single enclosing markdown code block
    are removed.  Prose around the object is left in place so that it fails to parse.
    """
    content = content.strip()
    match = _FENCE_RE.match(content)
    if match:
        content = match.group(1).strip()

    # Remove control characters except whitespace
    return "".join(ch for ch in content if ch >= " " or ch in "\n\r\t")


def to_json(value: Any) -> str:
    """Pretty JSON used for everything rendered into prompts."""
    return json.dumps(value, indent=2, default=str)
