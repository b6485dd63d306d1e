"""Masking for sensitive customer answers shown in logs and staff summaries."""

from __future__ import annotations

from typing import Iterable, Mapping


def mask_sensitive_value(value: str) -> str:
    """Keep at most two characters at each end and hide the rest behind at least three ``*``."""

    length = len(value)
    if length <= 2:
        return "*" * (length or 1)

    visible = min(2, length // 2)
    hidden = max(3, length - visible * 2)
    return f"{value[:visible]}{'*' * hidden}{value[length - visible:]}"


def mask_answers(answers: Mapping[str, str], sensitive_keys: Iterable[str]) -> dict[str, str]:
    sensitive = {key.strip().lower() for key in sensitive_keys}
    return {
        key: mask_sensitive_value(value) if key.strip().lower() in sensitive else value
        for key, value in answers.items()
    }
