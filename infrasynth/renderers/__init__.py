"""
Template rendering for the generated infrastructure.

Templates only see their render context plus the stateless naming helpers
registered as globals, so a render is a pure function of its inputs.
"""
from jinja2 import Environment, StrictUndefined

from infrasynth.naming import HELPERS


def bicep_str(text: str) -> str:
    """Quote `text` as a Bicep string literal."""
    escaped = text.replace("\\", "\\\\").replace("'", "\\'").replace("${", "\\${")
    return f"'{escaped}'"


def _make_env() -> Environment:
    env = Environment(
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )
    env.globals.update(HELPERS)
    env.globals["bicep_str"] = bicep_str
    return env


_ENV = _make_env()


def render(source: str, **context) -> str:
    return _ENV.from_string(source).render(**context)
