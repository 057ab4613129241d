"""
Template rendering via Jinja2.

Commands, scripts and declarations may reference resolved runtime
parameters as `{{ NAME }}`. Rendering is a single pass: substituted values
are not rendered again. A placeholder with no matching variable raises
UndefinedVariable instead of rendering empty text.
"""

from typing import Any, Mapping

from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, UndefinedError
from jinja2.meta import find_undeclared_variables

from runtime_init.errors import UndefinedVariable

_env = Environment(
    undefined=StrictUndefined,
    autoescape=False,
    keep_trailing_newline=True,
)


def render_data(template: str, variables: Mapping[str, Any]) -> str:
    """
    Substitute variables into a template.

    Args:
        template: Template text with `{{ NAME }}` placeholders
        variables: Mapping of placeholder names to values

    Returns:
        Rendered text

    Raises:
        UndefinedVariable: If a placeholder has no matching key
    """
    if "{{" not in template and "{%" not in template:
        return template

    try:
        parsed = _env.parse(template)
    except TemplateSyntaxError as e:
        raise UndefinedVariable(None, f"invalid template: {e.message}") from e

    missing = sorted(find_undeclared_variables(parsed) - set(variables))
    if missing:
        raise UndefinedVariable(missing[0])

    try:
        return _env.from_string(template).render(**variables)
    except UndefinedError as e:
        raise UndefinedVariable(None, str(e)) from e
