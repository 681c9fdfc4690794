"""Template languages supported by file and sqlscript items."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol

from .providers.scripts import PerlRunner
from .variables import Variables

TEMPLATE_LANGUAGES = ("varsubst", "perlscript")


class TemplateProcessor(Protocol):
    """Turns raw template text into final content."""

    def process(self, raw: str, variables: Variables, origin: str) -> str:
        """Return the rendered content of *raw* (read from *origin*)."""
        ...


class VarsubstProcessor:
    """Expands ``${key}`` placeholders."""

    def process(self, raw: str, variables: Variables, origin: str) -> str:
        """Return *raw* with every placeholder replaced."""
        return variables.replace_variables(raw) or ""


@dataclass(slots=True)
class PerlscriptProcessor:
    """Runs the template as a perl program and captures its output."""

    runner: PerlRunner

    def process(self, raw: str, variables: Variables, origin: str) -> str:
        """Return the standard output of the template program."""
        return self.runner.render(raw, variables.as_dict())


def template_processors(runner: PerlRunner) -> Mapping[str, TemplateProcessor]:
    """Return the processors keyed by ``templatelang`` value."""
    return {"varsubst": VarsubstProcessor(), "perlscript": PerlscriptProcessor(runner)}


__all__ = [
    "PerlscriptProcessor",
    "TEMPLATE_LANGUAGES",
    "TemplateProcessor",
    "VarsubstProcessor",
    "template_processors",
]
