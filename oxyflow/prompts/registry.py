"""Lightweight prompt template registry.

Templates use ``${name}`` placeholders rendered with
``string.Template.safe_substitute``, so literal JSON braces need no
escaping and unknown placeholders are left untouched.
"""

from string import Template
from typing import Any, Dict, List, Mapping, Optional


class PromptRegistry:
    """Global registry of named prompt templates."""

    _templates: Dict[str, str] = {}

    @classmethod
    def get(cls, template_name: str, **kwargs: object) -> str:
        """Retrieve and optionally render a prompt template.

        Args:
            template_name: Dot-separated template name
                (e.g. ``"agent.react_system"``).
            **kwargs: Values for ``${name}`` placeholders.

        Raises:
            KeyError: If *template_name* is not registered.
        """
        if template_name not in cls._templates:
            raise KeyError(
                f"Unknown prompt template: '{template_name}'. "
                f"Available: {cls.list_templates()}"
            )
        template = cls._templates[template_name]
        return render(template, kwargs) if kwargs else template

    @classmethod
    def register(cls, template_name: str, template: str) -> None:
        """Register a new template (or overwrite an existing one)."""
        cls._templates[template_name] = template

    @classmethod
    def list_templates(cls) -> List[str]:
        """Return sorted list of registered template names."""
        return sorted(cls._templates.keys())


def render(template: str, values: Optional[Mapping[str, Any]] = None) -> str:
    """Replace ``${name}`` with ``values[name]``; missing names stay as they are."""
    if not template:
        return ""
    values = values or {}
    return Template(template).safe_substitute(
        {k: v if isinstance(v, str) else str(v) for k, v in values.items()}
    )


def get_prompt(template_name: str, **kwargs: object) -> str:
    """Convenience shortcut for ``PromptRegistry.get()``."""
    return PromptRegistry.get(template_name, **kwargs)
