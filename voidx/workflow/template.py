"""``{{name}}`` placeholder rendering shared by llm and template-transform nodes."""

import json
import re
from typing import Any, Dict

PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def render_template(template: str, variables: Dict[str, Any]) -> str:
    """Substitute ``{{name}}`` with ``variables[name]``.

    Unknown placeholders are left as written.

    >>> render_template("Hello {{ name }}, {{missing}}", {"name": "Ada"})
    'Hello Ada, {{missing}}'
    """

    def replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        return _to_text(variables[name])

    return PLACEHOLDER.sub(replace, template or "")
