"""Prompt templates and the registry that serves them."""

from .registry import PromptRegistry, get_prompt, render
from . import agent, flows  # noqa: F401  registers built-in templates

__all__ = ["PromptRegistry", "get_prompt", "render"]
