"""Jinja2 prompt templates for the worker and the decomposer.

Templates are the ``.md`` files next to this module. Variables a template
does not receive render as empty, so optional ``{% if %}`` sections drop out.
"""

from __future__ import annotations

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, TemplateNotFound

_PROMPTS_DIR = Path(__file__).parent

_env = Environment(
    loader=FileSystemLoader(_PROMPTS_DIR),
    keep_trailing_newline=True,
    autoescape=False,
)


def render_prompt(template_name: str, **variables: object) -> str:
    """Render ``<template_name>.md`` with the given variables.

    Raises:
        FileNotFoundError: If no such template exists.
    """
    try:
        template = _env.get_template(f"{template_name}.md")
    except TemplateNotFound:
        raise FileNotFoundError(
            f"Prompt template not found: {_PROMPTS_DIR / template_name}.md"
        ) from None
    return template.render(**variables)
