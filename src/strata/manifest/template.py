# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/manifest/template.py
"""
Manifest templating.

Manifests reference template values with ``{{ .Key }}`` actions and may use
the ``indent`` helper to nest multi-line values under YAML block scalars::

    caBundle: {{ .accountOperatorMutatingWebhookCA }}
    script: |
    {{ indent 4 .startupScript }}

Manifests can also gate themselves away with ``{{ if ... }}`` / ``{{ end }}``
so that a disabled feature renders to nothing.

Each action is translated into a jinja2 expression and the resulting
template is rendered with ``StrictUndefined``: a reference to a key that is
not in the value set is a hard error, never an empty substitution.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple

from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, Undefined
from jinja2.exceptions import UndefinedError

from ..errors import TemplateExecutionError, TemplateParseError

_VALUES = "_values"

_ACTION = re.compile(r"\{\{(-\s)?(.*?)(\s-)?\}\}", re.S)

_TOKEN = re.compile(
    r"""\s*(?:
        (?P<string>"(?:[^"\\]|\\.)*")
      | (?P<raw>`[^`]*`)
      | (?P<number>-?\d+(?:\.\d+)?)
      | (?P<field>\.(?:[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)?)
      | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
      | (?P<punct>[|()])
    )""",
    re.X,
)

# template function name -> jinja global
_FUNCTIONS = {
    "indent": "indent",
    "eq": "_eq",
    "ne": "_ne",
    "not": "_not",
    "and": "_and",
    "or": "_or",
}

_UNSUPPORTED = {"range", "with", "define", "template", "block", "break", "continue"}


# ---------------------------------------------------------------------
# helpers exposed to templates
# ---------------------------------------------------------------------
def _defined(value: Any) -> Any:
    if isinstance(value, Undefined):
        value._fail_with_undefined_error()
    return value


def indent(spaces: int, text: Any) -> str:
    """Prefix every non-empty line of *text* with *spaces* blanks."""
    pad = " " * int(_defined(spaces))
    lines = str(_defined(text)).split("\n")
    return "\n".join(pad + line if line else line for line in lines)


def _eq(first: Any, *others: Any) -> bool:
    first = _defined(first)
    return any(first == _defined(o) for o in others)


def _ne(first: Any, second: Any) -> bool:
    return _defined(first) != _defined(second)


def _not(value: Any) -> bool:
    return not _defined(value)


def _and(*values: Any) -> Any:
    result: Any = True
    for v in values:
        result = _defined(v)
        if not result:
            return result
    return result


def _or(*values: Any) -> Any:
    result: Any = False
    for v in values:
        result = _defined(v)
        if result:
            return result
    return result


def _finalize(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return value


# ---------------------------------------------------------------------
# action translation
# ---------------------------------------------------------------------
def _tokenize(source: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    source = source.rstrip()
    while pos < len(source):
        m = _TOKEN.match(source, pos)
        if not m or m.end() == pos:
            raise TemplateParseError(f"unexpected {source[pos:].strip()!r} in action {{{{{source}}}}}")
        kind = m.lastgroup or ""
        tokens.append((kind, m.group(kind)))
        pos = m.end()
    return tokens


class _ActionParser:
    def __init__(self, tokens: List[Tuple[str, str]], source: str):
        self.tokens = tokens
        self.pos = 0
        self.source = source

    def _error(self, msg: str) -> TemplateParseError:
        return TemplateParseError(f"{msg} in action {{{{{self.source}}}}}")

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> Tuple[str, str]:
        tok = self._peek()
        if tok is None:
            raise self._error("unexpected end")
        self.pos += 1
        return tok

    def done(self) -> bool:
        return self.pos >= len(self.tokens)

    def pipeline(self) -> str:
        expr = self._command(None)
        while self._peek() == ("punct", "|"):
            self._next()
            expr = self._command(expr)
        return expr

    def _command(self, piped: Optional[str]) -> str:
        operands: List[Tuple[str, str]] = []
        while not self.done() and self._peek() not in (("punct", "|"), ("punct", ")")):
            operands.append(self._operand())
        if not operands:
            raise self._error("missing value")

        head_kind, head = operands[0]
        if head_kind == "func":
            args = []
            for kind, text in operands[1:]:
                if kind == "func":
                    raise self._error(f"function {text!r} used as a value")
                args.append(text)
            if piped is not None:
                args.append(piped)
            return f"{_FUNCTIONS[head]}({', '.join(args)})"

        if piped is not None:
            raise self._error(f"cannot pipe into non-function {head}")
        if len(operands) > 1:
            raise self._error("too many values")
        return head

    def _operand(self) -> Tuple[str, str]:
        kind, text = self._next()
        if kind == "string":
            try:
                return "value", json.dumps(json.loads(text))
            except ValueError:
                raise self._error(f"malformed string {text}") from None
        if kind == "raw":
            return "value", json.dumps(text[1:-1])
        if kind == "number":
            return "value", text
        if kind == "field":
            expr = _VALUES
            for part in text.split(".")[1:]:
                if part:
                    expr += f"[{json.dumps(part)}]"
            return "value", expr
        if kind == "ident":
            if text in ("true", "false"):
                return "value", text
            if text == "nil":
                return "value", "none"
            if text in _FUNCTIONS:
                return "func", text
            raise self._error(f"function {text!r} not defined")
        if text == "(":
            inner = self.pipeline()
            if self._next() != ("punct", ")"):
                raise self._error("unclosed parenthesis")
            return "value", f"({inner})"
        raise self._error(f"unexpected {text!r}")


def _literal(text: str) -> str:
    if "{%" in text or "{#" in text:
        return "{% raw %}" + text + "{% endraw %}"
    return text


def translate(text: str) -> str:
    """Translate ``{{ .Key }}`` style actions into a jinja2 template source."""
    out: List[str] = []
    blocks: List[str] = []
    pos = 0

    for m in _ACTION.finditer(text):
        out.append(_literal(text[pos:m.start()]))
        pos = m.end()

        lt = "-" if m.group(1) else ""
        rt = "-" if m.group(3) else ""
        body = m.group(2).strip()

        if body.startswith("/*"):
            if not body.endswith("*/"):
                raise TemplateParseError(f"unclosed comment in action {{{{{body}}}}}")
            out.append(f"{{#{lt} #}}" if not rt else f"{{#{lt} -#}}")
            continue

        parser = _ActionParser(_tokenize(body), body)
        first = parser._peek()
        keyword = first[1] if first and first[0] == "ident" else None

        if keyword in _UNSUPPORTED:
            raise TemplateParseError(f"unsupported action {keyword!r}")

        if keyword == "if":
            parser._next()
            out.append(f"{{%{lt} if {parser.pipeline()} {rt}%}}")
            blocks.append("if")
        elif keyword == "else":
            parser._next()
            if not blocks:
                raise TemplateParseError("unexpected {{else}}")
            if parser._peek() == ("ident", "if"):
                parser._next()
                out.append(f"{{%{lt} elif {parser.pipeline()} {rt}%}}")
            else:
                out.append(f"{{%{lt} else {rt}%}}")
        elif keyword == "end":
            parser._next()
            if not blocks:
                raise TemplateParseError("unexpected {{end}}")
            out.append(f"{{%{lt} end{blocks.pop()} {rt}%}}")
        else:
            out.append(f"{{{{{lt} {parser.pipeline()} {rt}}}}}")

        if not parser.done():
            raise TemplateParseError(f"unexpected {parser._peek()[1]!r} in action {{{{{body}}}}}")

    rest = text[pos:]
    if "{{" in rest:
        raise TemplateParseError("unclosed action")
    out.append(_literal(rest))

    if blocks:
        raise TemplateParseError(f"unexpected EOF: {len(blocks)} unclosed {{{{if}}}} block(s)")
    return "".join(out)


# ---------------------------------------------------------------------
# public API
# ---------------------------------------------------------------------
class TemplateRenderer:
    def __init__(self) -> None:
        self.env = Environment(
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            finalize=_finalize,
        )
        self.env.globals.update(
            indent=indent, _eq=_eq, _ne=_ne, _not=_not, _and=_and, _or=_or
        )

    def render(self, text: str | bytes, values: Mapping[str, Any], name: str = "manifest") -> str:
        if isinstance(text, bytes):
            try:
                text = text.decode("utf-8")
            except UnicodeDecodeError as e:
                raise TemplateParseError(
                    f"Failed to read template {name}: not valid UTF-8 ({e.reason} at byte {e.start})"
                ) from e

        source = translate(text)
        try:
            tmpl = self.env.from_string(source)
        except TemplateSyntaxError as e:
            raise TemplateParseError(f"Failed to parse template {name}: {e.message}") from e

        try:
            return tmpl.render({_VALUES: dict(values)})
        except UndefinedError as e:
            keys = sorted(values)
            raise TemplateExecutionError(
                f"Failed to execute template {name} with keys {keys}: {e.message}"
            ) from e
        except (TypeError, ValueError) as e:
            raise TemplateExecutionError(f"Failed to execute template {name}: {e}") from e

    def render_file(self, path: Path, values: Mapping[str, Any]) -> str:
        return self.render(Path(path).read_bytes(), values, name=str(path))


_default = TemplateRenderer()


def render_template(values: Mapping[str, Any], text: str | bytes, name: str = "manifest") -> str:
    """Render *text* against *values* with the shared renderer."""
    return _default.render(text, values, name=name)
