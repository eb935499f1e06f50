"""
governance-orchestrator — module skeleton

File: src/governance_orchestrator/synthesis_plane/prompt_templates.py
Last updated: 2026-10-17

Purpose
- Loads and renders specialist prompt templates from ``synthesis_plane/templates/``
  with strict placeholders.

What should be included in this file
- The fixed set of variables a specialist template may use.
- Prompt versioning and hashing so a retried attempt can be attributed.

Functional requirements
- Must render prompts deterministically for same inputs.
- A template referencing an unknown variable is an error, not an empty string.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Final

from jinja2 import Environment, StrictUndefined, meta
from jinja2.exceptions import TemplateError

from governance_orchestrator.domain.models import SpecialistCode
from governance_orchestrator.utils.hashing import sha256_text

if TYPE_CHECKING:
    from collections.abc import Mapping

ALLOWED_VARIABLES: Final[frozenset[str]] = frozenset(
    {
        "context",
        "difficulty",
        "issue_title",
        "max_tokens",
        "min_length",
        "specialist_description",
        "specialist_name",
        "stage",
        "workflow_type",
    }
)

_LAST_UPDATED_RE = re.compile(r"(?im)^\s*Last updated:\s*(.+?)\s*$")


class PromptTemplateError(RuntimeError):
    """Base error for prompt template loading and rendering."""


class PromptTemplateNotFoundError(PromptTemplateError, FileNotFoundError):
    """Raised when a specialist template file does not exist."""


class PromptTemplateVariableError(PromptTemplateError, ValueError):
    """Raised for missing/extra variables or whitelist violations."""


@dataclass(frozen=True, slots=True)
class RenderedPrompt:
    """Rendered prompt and deterministic hashes for attribution."""

    specialist_code: SpecialistCode
    prompt: str
    prompt_hash: str
    template_hash: str
    template_version: str


class PromptTemplateEngine:
    """Deterministic specialist prompt loader + renderer."""

    def __init__(self, *, template_root: Path | str | None = None) -> None:
        root = Path(template_root) if template_root is not None else _default_template_root()
        resolved_root = root.resolve()
        if not resolved_root.is_dir():
            raise PromptTemplateNotFoundError(f"template root does not exist: {resolved_root}")

        self._template_root = resolved_root
        self._sources: dict[SpecialistCode, str] = {}
        self._environment = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            newline_sequence="\n",
            keep_trailing_newline=True,
        )

    @property
    def template_root(self) -> Path:
        return self._template_root

    def render(
        self,
        specialist_code: SpecialistCode,
        variables: Mapping[str, object],
    ) -> RenderedPrompt:
        """Render the template for ``specialist_code`` with strict variable checks."""

        source = self._load_source(specialist_code)
        declared = meta.find_undeclared_variables(self._environment.parse(source))

        unexpected_in_template = sorted(declared - ALLOWED_VARIABLES)
        if unexpected_in_template:
            raise PromptTemplateVariableError(
                f"{specialist_code} template uses variables outside the whitelist: "
                + ", ".join(unexpected_in_template)
            )
        unexpected_inputs = sorted(set(variables) - ALLOWED_VARIABLES)
        if unexpected_inputs:
            raise PromptTemplateVariableError(
                "unexpected variables were provided: " + ", ".join(unexpected_inputs)
            )
        missing = sorted(declared - set(variables))
        if missing:
            raise PromptTemplateVariableError(
                "missing required template variables: " + ", ".join(missing)
            )

        values = {key: _serialize_variable_value(value) for key, value in variables.items()}
        try:
            rendered = self._environment.from_string(source).render(**values)
        except TemplateError as exc:
            raise PromptTemplateError(
                f"failed to render {specialist_code} template: {exc}"
            ) from exc

        prompt = _normalize_newlines(rendered)
        return RenderedPrompt(
            specialist_code=specialist_code,
            prompt=prompt,
            prompt_hash=sha256_text(prompt),
            template_hash=sha256_text(source),
            template_version=_extract_template_version(source),
        )

    def _load_source(self, specialist_code: SpecialistCode) -> str:
        cached = self._sources.get(specialist_code)
        if cached is not None:
            return cached
        path = self._template_root / f"{specialist_code.value}.md"
        if not path.is_file():
            raise PromptTemplateNotFoundError(
                f"template not found for specialist {specialist_code.value!r} under "
                f"{self._template_root}"
            )
        source = _normalize_newlines(path.read_text(encoding="utf-8"))
        self._sources[specialist_code] = source
        return source


def _default_template_root() -> Path:
    return Path(__file__).resolve().parent / "templates"


def _serialize_variable_value(value: object) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), sort_keys=True)
    except TypeError:
        return str(value)


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _extract_template_version(template_source: str) -> str:
    match = _LAST_UPDATED_RE.search(template_source)
    if match is None:
        return "unversioned"
    return match.group(1).strip()


__all__ = [
    "ALLOWED_VARIABLES",
    "PromptTemplateEngine",
    "PromptTemplateError",
    "PromptTemplateNotFoundError",
    "PromptTemplateVariableError",
    "RenderedPrompt",
]
