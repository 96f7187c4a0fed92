"""Jinja2 template rendering for generated configuration files."""
from __future__ import annotations

from collections.abc import Callable, Mapping
from pathlib import Path

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    TemplateError,
)

from .errors import TermstrapError


class TemplateRenderError(TermstrapError):
    """Raised when a template cannot be located or rendered."""


def lua_string(value: object) -> str:
    """Escape *value* for use inside a single-quoted Lua string literal."""
    text = str(value)
    for raw, escaped in (("\\", "\\\\"), ("'", "\\'"), ("\n", "\\n"), ("\r", "\\r")):
        text = text.replace(raw, escaped)
    return text


class TemplateEngine:
    """Render built-in templates, letting a local directory shadow them."""

    def __init__(self, environment: Environment) -> None:
        """Wrap a configured Jinja2 *environment*."""
        self.environment = environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine whose templates in *override_dir* win over built-ins."""
        loaders: list[FileSystemLoader | PackageLoader] = []
        if override_dir is not None and override_dir.expanduser().is_dir():
            loaders.append(FileSystemLoader(str(override_dir.expanduser())))
        loaders.append(PackageLoader("termstrap", "builtin_templates"))
        environment = Environment(  # noqa: S701 - output is shell/lua/toml, not HTML
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )
        environment.filters["lua_string"] = lua_string
        return cls(environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context*."""
        try:
            template = self.environment.get_template(template_name)
            return template.render(**dict(context))
        except TemplateError as exc:
            raise TemplateRenderError(f"Failed to render {template_name}: {exc}") from exc

    def producer(
        self,
        template_name: str,
        context: Mapping[str, object],
    ) -> Callable[[], str]:
        """Return a zero-argument callable rendering *template_name* on demand."""
        frozen = dict(context)

        def _render() -> str:
            return self.render_to_string(template_name, frozen)

        return _render


__all__ = ["TemplateEngine", "TemplateRenderError", "lua_string"]
