"""Model name validation for values passed through to CLI argv."""
from __future__ import annotations

import re

MODEL_NAME_MAX_LENGTH = 128
MODEL_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._\-:/]*$")


def validate_model_name(model: str | None) -> str | None:
    """Return an error message, or None when ``model`` is acceptable.

    Allowed: letters, digits, dots, hyphens, underscores, colons and
    slashes, starting with a letter or digit. Covers ids such as
    ``claude-sonnet-4-5``, ``gpt-5.2`` and ``org/model:variant``.
    """
    if not model or not model.strip():
        return "Model name cannot be empty"
    trimmed = model.strip()
    if len(trimmed) > MODEL_NAME_MAX_LENGTH:
        return f"Model name too long (max {MODEL_NAME_MAX_LENGTH} characters)"
    if not MODEL_NAME_PATTERN.match(trimmed):
        return (
            "Model name contains invalid characters. Use only letters, "
            "numbers, dots, hyphens, underscores, colons, and slashes."
        )
    return None
