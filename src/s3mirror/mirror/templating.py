"""
Template Rendering for the s3mirror Sync Subsystem

URLs, destination keys and inclusion conditions are written as templates in a
small Go-template compatible grammar:

    {{ .name }}                         field substitution
    {{ trimPrefix "v" .version }}       helper call
    {{ .os | upper }}                   pipeline (value becomes the last argument)
    {{ if eq .os "windows" }}.exe{{ end }}
    {{- .arch -}}                       trim surrounding whitespace
    {{/* comment */}}

Only the fields of ExpansionContext and the helpers in FUNCTIONS are
available. Templates have no access to the environment or the file system.
"""

import functools
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from s3mirror.constants import CONDITION_TRUE, CONTEXT_FIELDS
from s3mirror.exceptions import TemplateError

from .interfaces import ExpansionContext

IDENT_RX = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
NUMBER_RX = re.compile(r"-?\d+")
PRINTF_VERB_RX = re.compile(r"%([%sdvq])")
TRIM_MARKER_RX = re.compile(r"-\s")
UNSUPPORTED_ACTIONS = frozenset(
    {"range", "with", "define", "template", "block", "break", "continue"}
)
_STRING_ESCAPES = {'"': '"', "\\": "\\", "n": "\n", "t": "\t", "r": "\r"}


class _ParseError(Exception):
    pass


class _ExecutionError(Exception):
    pass


# =============================================================================
# Lexing
# =============================================================================


@dataclass(frozen=True)
class _Token:
    kind: str  # string, number, bool, field, ident, lparen, rparen, pipe
    value: Any


@dataclass
class _ActionItem:
    tokens: List[_Token]
    trim_left: bool
    trim_right: bool
    comment: bool = False


def _lex_string(source: str, pos: int) -> Tuple[str, int]:
    chars: List[str] = []
    i = pos + 1
    while i < len(source):
        ch = source[i]
        if ch == '"':
            return "".join(chars), i + 1
        if ch == "\\":
            if i + 1 >= len(source) or source[i + 1] not in _STRING_ESCAPES:
                raise _ParseError(f"invalid escape in string at offset {i}")
            chars.append(_STRING_ESCAPES[source[i + 1]])
            i += 2
            continue
        if ch == "\n":
            break
        chars.append(ch)
        i += 1
    raise _ParseError(f"unterminated string starting at offset {pos}")


def _lex_action(source: str, pos: int) -> Tuple[List[_Token], int, bool, bool]:
    """Lex one action body starting after '{{'; returns tokens, end offset, trim_right, comment."""
    tokens: List[_Token] = []
    i = pos
    n = len(source)
    while i < n and source[i].isspace():
        i += 1
    if source.startswith("/*", i):
        end = source.find("*/", i + 2)
        if end < 0:
            raise _ParseError(f"unclosed comment at offset {i}")
        i = end + 2
        while i < n and source[i].isspace():
            i += 1
        if source.startswith("-}}", i):
            return tokens, i + 3, True, True
        if source.startswith("}}", i):
            return tokens, i + 2, False, True
        raise _ParseError(f"comment ends before closing delimiter at offset {i}")

    while i < n:
        ch = source[i]
        if ch.isspace():
            if source.startswith("-}}", i + 1):
                return tokens, i + 4, True, False
            i += 1
            continue
        if source.startswith("}}", i):
            return tokens, i + 2, False, False
        if ch == '"':
            value, i = _lex_string(source, i)
            tokens.append(_Token("string", value))
        elif ch == "`":
            end = source.find("`", i + 1)
            if end < 0:
                raise _ParseError(f"unterminated raw string starting at offset {i}")
            tokens.append(_Token("string", source[i + 1 : end]))
            i = end + 1
        elif ch == "(":
            tokens.append(_Token("lparen", ch))
            i += 1
        elif ch == ")":
            tokens.append(_Token("rparen", ch))
            i += 1
        elif ch == "|":
            if source.startswith("||", i):
                raise _ParseError(f"unexpected '||' at offset {i}")
            tokens.append(_Token("pipe", ch))
            i += 1
        elif ch == ".":
            match = IDENT_RX.match(source, i + 1)
            if not match:
                raise _ParseError(f"expected field name after '.' at offset {i}")
            tokens.append(_Token("field", match.group(0)))
            i = match.end()
        elif ch.isdigit() or (ch == "-" and i + 1 < n and source[i + 1].isdigit()):
            match = NUMBER_RX.match(source, i)
            tokens.append(_Token("number", int(match.group(0))))
            i = match.end()
        elif ch.isalpha() or ch == "_":
            match = IDENT_RX.match(source, i)
            word = match.group(0)
            if word in ("true", "false"):
                tokens.append(_Token("bool", word == "true"))
            else:
                tokens.append(_Token("ident", word))
            i = match.end()
        else:
            raise _ParseError(f"unexpected character {ch!r} at offset {i}")
    raise _ParseError(f"unclosed action starting at offset {pos - 2}")


def _lex(source: str) -> List[Union[str, _ActionItem]]:
    items: List[Union[str, _ActionItem]] = []
    pos = 0
    while pos < len(source):
        start = source.find("{{", pos)
        if start < 0:
            items.append(source[pos:])
            break
        if start > pos:
            items.append(source[pos:start])
        body = start + 2
        trim_left = bool(TRIM_MARKER_RX.match(source, body))
        if trim_left:
            body += 1
        tokens, pos, trim_right, comment = _lex_action(source, body)
        items.append(_ActionItem(tokens, trim_left, trim_right, comment))

    # Apply {{- and -}} to the neighbouring text
    for index, item in enumerate(items):
        if not isinstance(item, _ActionItem):
            continue
        if item.trim_left and index > 0 and isinstance(items[index - 1], str):
            items[index - 1] = items[index - 1].rstrip()
        if (
            item.trim_right
            and index + 1 < len(items)
            and isinstance(items[index + 1], str)
        ):
            items[index + 1] = items[index + 1].lstrip()
    return items


# =============================================================================
# Syntax tree
# =============================================================================


@dataclass(frozen=True)
class _Field:
    name: str


@dataclass(frozen=True)
class _Literal:
    value: Any


@dataclass(frozen=True)
class _Call:
    name: str
    args: Tuple[Any, ...]


@dataclass(frozen=True)
class _Pipeline:
    commands: Tuple[Any, ...]


@dataclass(frozen=True)
class _Text:
    text: str


@dataclass(frozen=True)
class _Output:
    pipeline: _Pipeline


@dataclass(frozen=True)
class _If:
    branches: Tuple[Tuple[_Pipeline, Tuple[Any, ...]], ...]
    otherwise: Tuple[Any, ...] = ()


def _split_top_level(tokens: List[_Token]) -> List[List[_Token]]:
    segments: List[List[_Token]] = [[]]
    depth = 0
    for token in tokens:
        if token.kind == "lparen":
            depth += 1
        elif token.kind == "rparen":
            depth -= 1
            if depth < 0:
                raise _ParseError("unexpected ')'")
        if token.kind == "pipe" and depth == 0:
            segments.append([])
            continue
        segments[-1].append(token)
    if depth != 0:
        raise _ParseError("unclosed '('")
    return segments


def _parse_operands(tokens: List[_Token]) -> List[Any]:
    operands: List[Any] = []
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if token.kind == "lparen":
            depth = 1
            j = i + 1
            while j < len(tokens) and depth:
                if tokens[j].kind == "lparen":
                    depth += 1
                elif tokens[j].kind == "rparen":
                    depth -= 1
                j += 1
            operands.append(_parse_pipeline(tokens[i + 1 : j - 1]))
            i = j
            continue
        if token.kind in ("string", "number", "bool"):
            operands.append(_Literal(token.value))
        elif token.kind == "field":
            operands.append(_Field(token.value))
        elif token.kind == "ident":
            operands.append(_Call(token.value, ()))
        else:
            raise _ParseError(f"unexpected {token.value!r}")
        i += 1
    return operands


def _parse_command(tokens: List[_Token], first: bool) -> Any:
    if not tokens:
        raise _ParseError("missing command in pipeline")
    head = tokens[0]
    if head.kind == "ident":
        if head.value in ("if", "else", "end") or head.value in UNSUPPORTED_ACTIONS:
            raise _ParseError(f"unexpected keyword {head.value!r}")
        return _Call(head.value, tuple(_parse_operands(tokens[1:])))

    operands = _parse_operands(tokens)
    if len(operands) != 1:
        raise _ParseError("can't give arguments to a non-function")
    if not first:
        raise _ParseError("non-function in pipeline stage")
    return operands[0]


def _parse_pipeline(tokens: List[_Token]) -> _Pipeline:
    if not tokens:
        raise _ParseError("empty pipeline")
    segments = _split_top_level(tokens)
    commands = tuple(
        _parse_command(segment, first=index == 0)
        for index, segment in enumerate(segments)
    )
    return _Pipeline(commands)


@dataclass
class _IfBuilder:
    branches: List[Tuple[_Pipeline, List[Any]]]
    otherwise: Optional[List[Any]] = None

    @property
    def body(self) -> List[Any]:
        return self.otherwise if self.otherwise is not None else self.branches[-1][1]

    def build(self) -> _If:
        return _If(
            branches=tuple((cond, tuple(nodes)) for cond, nodes in self.branches),
            otherwise=tuple(self.otherwise or ()),
        )


def _parse(source: str) -> Tuple[Any, ...]:
    root: List[Any] = []
    stack: List[_IfBuilder] = []

    def current() -> List[Any]:
        return stack[-1].body if stack else root

    for item in _lex(source):
        if isinstance(item, str):
            if item:
                current().append(_Text(item))
            continue
        if item.comment:
            continue
        tokens = item.tokens
        if not tokens:
            raise _ParseError("empty action")

        keyword = tokens[0].value if tokens[0].kind == "ident" else None
        if keyword == "if":
            builder = _IfBuilder(branches=[(_parse_pipeline(tokens[1:]), [])])
            current().append(builder)
            stack.append(builder)
        elif keyword == "else":
            if not stack:
                raise _ParseError("unexpected {{else}}")
            builder = stack[-1]
            if builder.otherwise is not None:
                raise _ParseError("{{else}} after final {{else}}")
            if len(tokens) > 1 and tokens[1].kind == "ident" and tokens[1].value == "if":
                builder.branches.append((_parse_pipeline(tokens[2:]), []))
            elif len(tokens) > 1:
                raise _ParseError("unexpected tokens after {{else}}")
            else:
                builder.otherwise = []
        elif keyword == "end":
            if len(tokens) > 1:
                raise _ParseError("unexpected tokens after {{end}}")
            if not stack:
                raise _ParseError("unexpected {{end}}")
            stack.pop()
        elif keyword in UNSUPPORTED_ACTIONS:
            raise _ParseError(f"unsupported action {keyword!r}")
        else:
            current().append(_Output(_parse_pipeline(tokens)))

    if stack:
        raise _ParseError("unexpected end of template: missing {{end}}")
    return _freeze(root)


def _freeze(nodes: List[Any]) -> Tuple[Any, ...]:
    frozen: List[Any] = []
    for node in nodes:
        if isinstance(node, _IfBuilder):
            node.branches = [(cond, list(_freeze(body))) for cond, body in node.branches]
            if node.otherwise is not None:
                node.otherwise = list(_freeze(node.otherwise))
            frozen.append(node.build())
        else:
            frozen.append(node)
    return tuple(frozen)


# =============================================================================
# Helpers
# =============================================================================


def _type_name(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    return "string"


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _require_str(fn: str, *values: Any) -> None:
    for value in values:
        if not isinstance(value, str):
            raise _ExecutionError(
                f"{fn}: expected string argument, got {_type_name(value)}"
            )


def _comparable(fn: str, left: Any, right: Any) -> None:
    if _type_name(left) != _type_name(right):
        raise _ExecutionError(
            f"{fn}: incompatible types for comparison: "
            f"{_type_name(left)} and {_type_name(right)}"
        )


def _eq(left: Any, *others: Any) -> bool:
    for other in others:
        _comparable("eq", left, other)
        if left == other:
            return True
    return False


def _ne(left: Any, right: Any) -> bool:
    _comparable("ne", left, right)
    return left != right


def _ordered(fn: str, op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def compare(left: Any, right: Any) -> bool:
        _comparable(fn, left, right)
        if isinstance(left, bool):
            raise _ExecutionError(f"{fn}: invalid type for comparison: bool")
        return op(left, right)

    return compare


def _and(*values: Any) -> Any:
    for value in values:
        if not value:
            return value
    return values[-1]


def _or(*values: Any) -> Any:
    for value in values:
        if value:
            return value
    return values[-1]


def _string_fn(fn: str, op: Callable[..., Any]) -> Callable[..., Any]:
    def call(*values: Any) -> Any:
        _require_str(fn, *values)
        return op(*values)

    return call


def _trim_prefix(prefix: str, s: str) -> str:
    return s[len(prefix) :] if prefix and s.startswith(prefix) else s


def _trim_suffix(suffix: str, s: str) -> str:
    return s[: -len(suffix)] if suffix and s.endswith(suffix) else s


def _default(fallback: Any, value: Any) -> Any:
    return value if value else fallback


def _printf(fmt: Any, *args: Any) -> str:
    _require_str("printf", fmt)
    remaining = list(args)

    def substitute(match: "re.Match[str]") -> str:
        verb = match.group(1)
        if verb == "%":
            return "%"
        if not remaining:
            raise _ExecutionError(f"printf: missing argument for %{verb}")
        value = remaining.pop(0)
        if verb == "d":
            if isinstance(value, bool) or not isinstance(value, int):
                raise _ExecutionError(
                    f"printf: %d expects int, got {_type_name(value)}"
                )
            return str(value)
        if verb == "q":
            return '"' + _to_text(value).replace("\\", "\\\\").replace('"', '\\"') + '"'
        return _to_text(value)

    rendered = PRINTF_VERB_RX.sub(substitute, fmt)
    if remaining:
        raise _ExecutionError(f"printf: {len(remaining)} extra argument(s)")
    return rendered


# name -> (callable, min args, max args or None)
FUNCTIONS: Dict[str, Tuple[Callable[..., Any], int, Optional[int]]] = {
    "eq": (_eq, 2, None),
    "ne": (_ne, 2, 2),
    "lt": (_ordered("lt", lambda a, b: a < b), 2, 2),
    "le": (_ordered("le", lambda a, b: a <= b), 2, 2),
    "gt": (_ordered("gt", lambda a, b: a > b), 2, 2),
    "ge": (_ordered("ge", lambda a, b: a >= b), 2, 2),
    "and": (_and, 1, None),
    "or": (_or, 1, None),
    "not": (lambda value: not value, 1, 1),
    "lower": (_string_fn("lower", str.lower), 1, 1),
    "upper": (_string_fn("upper", str.upper), 1, 1),
    "title": (_string_fn("title", str.title), 1, 1),
    "trim": (_string_fn("trim", str.strip), 1, 1),
    "trimPrefix": (_string_fn("trimPrefix", _trim_prefix), 2, 2),
    "trimSuffix": (_string_fn("trimSuffix", _trim_suffix), 2, 2),
    "hasPrefix": (_string_fn("hasPrefix", lambda prefix, s: s.startswith(prefix)), 2, 2),
    "hasSuffix": (_string_fn("hasSuffix", lambda suffix, s: s.endswith(suffix)), 2, 2),
    "contains": (_string_fn("contains", lambda sub, s: sub in s), 2, 2),
    "replace": (_string_fn("replace", lambda old, new, s: s.replace(old, new)), 3, 3),
    "default": (_default, 2, 2),
    "printf": (_printf, 1, None),
}


# =============================================================================
# Execution
# =============================================================================

_NO_VALUE = object()


def _call(name: str, args: List[Any]) -> Any:
    entry = FUNCTIONS.get(name)
    if entry is None:
        raise _ExecutionError(f'function "{name}" not defined')
    func, min_args, max_args = entry
    if len(args) < min_args or (max_args is not None and len(args) > max_args):
        expected = str(min_args) if min_args == max_args else f"at least {min_args}"
        raise _ExecutionError(
            f"wrong number of args for {name}: want {expected} got {len(args)}"
        )
    return func(*args)


def _evaluate(operand: Any, values: Dict[str, str]) -> Any:
    if isinstance(operand, _Literal):
        return operand.value
    if isinstance(operand, _Field):
        if operand.name not in values:
            raise _ExecutionError(
                f"no field {operand.name!r} in context "
                f"(available: {', '.join(CONTEXT_FIELDS)})"
            )
        return values[operand.name]
    if isinstance(operand, _Pipeline):
        return _run_pipeline(operand, values)
    if isinstance(operand, _Call):
        return _call(operand.name, [_evaluate(arg, values) for arg in operand.args])
    raise _ExecutionError(f"cannot evaluate {operand!r}")


def _run_pipeline(pipeline: _Pipeline, values: Dict[str, str]) -> Any:
    result: Any = _NO_VALUE
    for command in pipeline.commands:
        if isinstance(command, _Call):
            args = [_evaluate(arg, values) for arg in command.args]
            if result is not _NO_VALUE:
                args.append(result)
            result = _call(command.name, args)
        else:
            result = _evaluate(command, values)
    return result


def _execute(nodes: Tuple[Any, ...], values: Dict[str, str], out: List[str]) -> None:
    for node in nodes:
        if isinstance(node, _Text):
            out.append(node.text)
        elif isinstance(node, _Output):
            out.append(_to_text(_run_pipeline(node.pipeline, values)))
        elif isinstance(node, _If):
            for condition, body in node.branches:
                if _run_pipeline(condition, values):
                    _execute(body, values, out)
                    break
            else:
                _execute(node.otherwise, values, out)


@dataclass(frozen=True)
class Template:
    """A parsed template, reusable across contexts."""

    source: str
    nodes: Tuple[Any, ...]

    def render(self, context: ExpansionContext) -> str:
        """
        Render the template against ``context``.

        Raises:
            TemplateError: With phase "execute" when a field or helper is
                unknown or a helper rejects its arguments.
        """
        out: List[str] = []
        try:
            _execute(self.nodes, context.as_dict(), out)
        except _ExecutionError as exc:
            raise TemplateError(TemplateError.EXECUTE, self.source, str(exc)) from None
        return "".join(out)


@functools.lru_cache(maxsize=256)
def parse_template(source: str) -> Template:
    """
    Parse ``source`` into a Template.

    Raises:
        TemplateError: With phase "parse" when the template is malformed.
    """
    if not isinstance(source, str):
        raise TemplateError(
            TemplateError.PARSE, str(source), "template must be a string"
        )
    try:
        nodes = _parse(source)
    except _ParseError as exc:
        raise TemplateError(TemplateError.PARSE, source, str(exc)) from None
    return Template(source=source, nodes=nodes)


def render(template: str, context: ExpansionContext) -> str:
    """Parse (cached) and render ``template`` against ``context``."""
    return parse_template(template).render(context)


def evaluate_condition(template: str, context: ExpansionContext) -> bool:
    """
    Render a condition and report whether it holds.

    The condition holds only when the rendered text, with surrounding whitespace
    removed, is exactly "true". Render errors propagate.
    """
    return render(template, context).strip() == CONDITION_TRUE
