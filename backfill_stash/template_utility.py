"""
template_utility.py

Placeholder substitution for request templates.

Placeholders use the Postman form `{{name}}`. The name is trimmed and looked up
case-sensitively in a data row; unknown names are left untouched so that a
partially resolved request stays visibly unresolved instead of failing.
"""
from __future__ import annotations

import json
import re
from typing import Any, Mapping


_PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")


def substitute(template: str, row: Mapping[str, str]) -> str:
    """Replace every `{{name}}` in `template` with `row[name]` when present."""
    if not template or "{{" not in template:
        return template

    def repl(m: re.Match) -> str:
        name = m.group(1).strip()
        if name in row:
            return str(row[name])
        return m.group(0)

    return _PLACEHOLDER_RE.sub(repl, template)


def _substitute_values(value: Any, row: Mapping[str, str]) -> Any:
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if k in row:
                # A column named like the key wins over whatever the template holds
                out[k] = row[k]
            elif isinstance(v, str):
                out[k] = substitute(v, row)
            else:
                out[k] = _substitute_values(v, row)
        return out
    if isinstance(value, list):
        return [substitute(v, row) if isinstance(v, str) else _substitute_values(v, row) for v in value]
    if isinstance(value, str):
        return substitute(value, row)
    return value


def substitute_body(body_template: str, row: Mapping[str, str]) -> str:
    """
    Render a request body against a data row.

    - Blank bodies are returned unchanged.
    - JSON bodies are walked recursively: an object key that matches a column
      name takes the column value outright; other string values get placeholder
      substitution. The result is re-serialized as compact JSON, keys in their
      original order.
    - Anything that is not JSON falls back to plain placeholder substitution.
    """
    if not body_template or not body_template.strip():
        return body_template
    try:
        data = json.loads(body_template)
    except ValueError:
        return substitute(body_template, row)
    return json.dumps(_substitute_values(data, row), separators=(",", ":"), ensure_ascii=False)
