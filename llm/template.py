"""
Placeholder substitution for user prompt templates.

Templates use ``{{name}}`` tokens where ``name`` is a plain identifier. Any
other ``{{...}}`` token (``{{ name }}``, ``{{patient-name}}``) is rejected
rather than passed through. Rendering is a single pass: values are inserted
verbatim, so a value that itself contains ``{{x}}`` is never expanded.
"""

from __future__ import annotations

import re
from typing import Mapping

from analysis.errors import ConfigurationError

_TOKEN_RE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def _tokens(template: str) -> list[str]:
    seen: list[str] = []
    for match in _TOKEN_RE.finditer(template):
        token = match.group(1)
        if token not in seen:
            seen.append(token)
    return seen


def find_placeholders(template: str) -> list[str]:
    """Return placeholder names in order of first appearance."""
    return [t for t in _tokens(template) if _NAME_RE.fullmatch(t)]


def invalid_placeholders(template: str) -> list[str]:
    """Tokens between ``{{`` and ``}}`` that are not plain identifiers."""
    return [t for t in _tokens(template) if not _NAME_RE.fullmatch(t)]


def missing_placeholders(template: str, values: Mapping[str, str]) -> list[str]:
    return [name for name in find_placeholders(template) if name not in values]


def render_template(template: str, values: Mapping[str, str]) -> str:
    """Substitute every placeholder in ``template``.

    Raises ConfigurationError for malformed tokens and for placeholders
    without a value; nothing is returned in that case, so a partial prompt
    can never reach a provider.
    """
    invalid = invalid_placeholders(template)
    if invalid:
        raise ConfigurationError(
            "Malformed template placeholders: "
            + ", ".join("{{" + t + "}}" for t in invalid),
            missing=invalid,
        )
    missing = missing_placeholders(template, values)
    if missing:
        raise ConfigurationError(
            "Template placeholders without a value: "
            + ", ".join(missing),
            missing=missing,
        )
    return _TOKEN_RE.sub(lambda m: str(values[m.group(1)]), template)
