"""Rendering helpers for billing email notifications.

Each notification kind ships three templates: ``<kind>_subject.txt.j2``,
``<kind>_body.txt.j2`` and ``<kind>_body.html.j2``. Placeholders use the
``{{ name }}`` form; unknown names render as an empty string.
"""
from __future__ import annotations

import html
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping, Tuple

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
_PLACEHOLDER = re.compile(r"{{\s*(\w+)\s*}}")


@lru_cache(maxsize=None)
def _template_source(name: str) -> str:
    return (TEMPLATE_DIR / name).read_text(encoding="utf-8")


def _fill(name: str, context: Mapping[str, Any], *, html_safe: bool) -> str:
    def _value(match: re.Match[str]) -> str:
        raw = context.get(match.group(1))
        text = "" if raw is None else str(raw)
        return html.escape(text) if html_safe else text

    return _PLACEHOLDER.sub(_value, _template_source(name)).strip()


def render_subject_body(kind: str, context: Mapping[str, Any]) -> Tuple[str, str, str]:
    """Return ``(subject, text_body, html_body)`` for notification ``kind``."""

    return (
        _fill(f"{kind}_subject.txt.j2", context, html_safe=False),
        _fill(f"{kind}_body.txt.j2", context, html_safe=False),
        _fill(f"{kind}_body.html.j2", context, html_safe=True),
    )


__all__ = ["TEMPLATE_DIR", "render_subject_body"]
