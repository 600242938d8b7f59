"""Restricted parser for inline JavaScript data literals.

Embed pages ship their player config as ``makePlayer({...})``. The
payload comes from a semi-trusted third party, so it is never evaluated:
this module scans out the balanced object literal and parses it with a
small recursive-descent parser into a tagged value tree.

Accepted syntax is a superset of JSON: single/double/backtick quoted
strings with escapes, unquoted identifier keys, trailing commas, ``//``
and ``/* */`` comments, ``undefined``, hex numbers, ``Infinity``/``NaN``.
Anything else in value position (function expressions, identifiers,
calls) is skipped up to the next delimiter and becomes ``JsNull``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from vidrelay.domain.exceptions import ParseFailure

_MAX_DEPTH = 128


@dataclass(frozen=True)
class JsNull:
    def to_python(self) -> None:
        return None


@dataclass(frozen=True)
class JsBool:
    value: bool

    def to_python(self) -> bool:
        return self.value


@dataclass(frozen=True)
class JsNumber:
    value: float | int

    def to_python(self) -> float | int:
        return self.value


@dataclass(frozen=True)
class JsString:
    value: str

    def to_python(self) -> str:
        return self.value


@dataclass(frozen=True)
class JsArray:
    items: tuple[JsValue, ...] = ()

    def to_python(self) -> list[Any]:
        return [item.to_python() for item in self.items]


@dataclass(frozen=True)
class JsObject:
    fields: dict[str, JsValue] = field(default_factory=dict)

    def get(self, key: str) -> JsValue | None:
        return self.fields.get(key)

    def to_python(self) -> dict[str, Any]:
        return {k: v.to_python() for k, v in self.fields.items()}


JsValue = Union[JsNull, JsBool, JsNumber, JsString, JsArray, JsObject]


def lookup(value: JsValue | None, *path: str | int) -> JsValue | None:
    """Walk ``path`` through objects (str keys) and arrays (int indexes)."""
    current = value
    for step in path:
        if isinstance(step, str) and isinstance(current, JsObject):
            current = current.get(step)
        elif isinstance(step, int) and isinstance(current, JsArray):
            current = current.items[step] if 0 <= step < len(current.items) else None
        else:
            return None
    return current


def as_str(value: JsValue | None) -> str | None:
    if isinstance(value, JsString):
        return value.value
    if isinstance(value, JsNumber):
        return str(value.value)
    return None


def as_int(value: JsValue | None) -> int | None:
    if isinstance(value, JsNumber) and float(value.value).is_integer():
        return int(value.value)
    if isinstance(value, JsString):
        try:
            return int(value.value.strip())
        except ValueError:
            return None
    return None


_QUOTES = "\"'`"
_SIMPLE_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "0": "\0",
}
_KEYWORDS: dict[str, JsValue] = {
    "true": JsBool(True),
    "false": JsBool(False),
    "null": JsNull(),
    "undefined": JsNull(),
    "Infinity": JsNumber(float("inf")),
    "NaN": JsNumber(float("nan")),
}


def _is_ident_start(ch: str) -> bool:
    return ch.isalpha() or ch in "_$"


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_$"


def _combine_surrogates(text: str) -> str:
    """Join ``\\uD83D\\uDE00`` style escape pairs into one code point.

    Unpaired surrogates become U+FFFD so the result always encodes as UTF-8.
    """
    if not any("\ud800" <= ch <= "\udfff" for ch in text):
        return text
    return text.encode("utf-16-le", "surrogatepass").decode("utf-16-le", "replace")


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0
        self.depth = 0

    def error(self, message: str) -> ParseFailure:
        return ParseFailure(f"{message} at offset {self.pos}")

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def skip_trivia(self) -> None:
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]
            if ch.isspace():
                self.pos += 1
            elif text.startswith("//", self.pos):
                end = text.find("\n", self.pos)
                self.pos = len(text) if end == -1 else end + 1
            elif text.startswith("/*", self.pos):
                end = text.find("*/", self.pos + 2)
                if end == -1:
                    raise self.error("unterminated comment")
                self.pos = end + 2
            else:
                return

    def parse_document(self) -> JsValue:
        value = self.parse_value()
        self.skip_trivia()
        if self.pos != len(self.text):
            raise self.error("trailing characters")
        return value

    def parse_value(self) -> JsValue:
        self.skip_trivia()
        ch = self.peek()
        if not ch:
            raise self.error("unexpected end of input")
        if ch == "{":
            return self.parse_object()
        if ch == "[":
            return self.parse_array()
        if ch in _QUOTES:
            return JsString(self.parse_string())
        if ch.isdigit() or ch in "+-.":
            return self.parse_number()
        if _is_ident_start(ch):
            start = self.pos
            ident = self.parse_identifier()
            self.skip_trivia()
            if ident in _KEYWORDS and self.peek() in (",", "}", "]", ""):
                return _KEYWORDS[ident]
            self.pos = start
            self.skip_expression()
            return JsNull()
        if ch == "(":
            self.skip_expression()
            return JsNull()
        raise self.error(f"unexpected character {ch!r}")

    def _enter(self) -> None:
        self.depth += 1
        if self.depth > _MAX_DEPTH:
            raise self.error("literal nested too deeply")

    def parse_object(self) -> JsObject:
        self._enter()
        self.pos += 1
        fields: dict[str, JsValue] = {}
        while True:
            self.skip_trivia()
            ch = self.peek()
            if ch == "}":
                self.pos += 1
                break
            key = self.parse_key()
            self.skip_trivia()
            if self.peek() == ":":
                self.pos += 1
                fields[key] = self.parse_value()
            elif self.peek() in (",", "}"):
                # shorthand property ``{ foo }`` refers to a variable
                fields[key] = JsNull()
            elif self.peek() == "(":
                # method shorthand ``foo() { ... }``
                self.skip_expression()
                fields[key] = JsNull()
            else:
                raise self.error("expected ':' after key")
            self.skip_trivia()
            ch = self.peek()
            if ch == ",":
                self.pos += 1
            elif ch == "}":
                self.pos += 1
                break
            else:
                raise self.error("expected ',' or '}' in object")
        self.depth -= 1
        return JsObject(fields)

    def parse_key(self) -> str:
        ch = self.peek()
        if ch in _QUOTES:
            return self.parse_string()
        if ch.isdigit():
            number = self.parse_number()
            return str(number.value)
        if _is_ident_start(ch):
            return self.parse_identifier()
        raise self.error(f"invalid object key start {ch!r}")

    def parse_array(self) -> JsArray:
        self._enter()
        self.pos += 1
        items: list[JsValue] = []
        while True:
            self.skip_trivia()
            ch = self.peek()
            if ch == "]":
                self.pos += 1
                break
            if ch == ",":
                # elision ``[1,,2]``
                self.pos += 1
                items.append(JsNull())
                continue
            items.append(self.parse_value())
            self.skip_trivia()
            ch = self.peek()
            if ch == ",":
                self.pos += 1
            elif ch == "]":
                self.pos += 1
                break
            else:
                raise self.error("expected ',' or ']' in array")
        self.depth -= 1
        return JsArray(tuple(items))

    def parse_identifier(self) -> str:
        start = self.pos
        while self.pos < len(self.text) and _is_ident_char(self.text[self.pos]):
            self.pos += 1
        return self.text[start : self.pos]

    def parse_string(self) -> str:
        quote = self.text[self.pos]
        self.pos += 1
        out: list[str] = []
        text = self.text
        while True:
            if self.pos >= len(text):
                raise self.error("unterminated string")
            ch = text[self.pos]
            if ch == quote:
                self.pos += 1
                return _combine_surrogates("".join(out))
            if ch == "\\":
                out.append(self.parse_escape())
                continue
            if ch == "\n" and quote != "`":
                raise self.error("newline in string")
            out.append(ch)
            self.pos += 1

    def parse_escape(self) -> str:
        self.pos += 1
        if self.pos >= len(self.text):
            raise self.error("unterminated escape")
        ch = self.text[self.pos]
        self.pos += 1
        if ch in _SIMPLE_ESCAPES:
            return _SIMPLE_ESCAPES[ch]
        if ch == "u":
            if self.peek() == "{":
                end = self.text.find("}", self.pos)
                if end == -1:
                    raise self.error("bad unicode escape")
                digits = self.text[self.pos + 1 : end]
                self.pos = end + 1
            else:
                digits = self.text[self.pos : self.pos + 4]
                self.pos += 4
            return self._codepoint(digits)
        if ch == "x":
            digits = self.text[self.pos : self.pos + 2]
            self.pos += 2
            return self._codepoint(digits)
        if ch == "\n":
            return ""
        return ch

    def _codepoint(self, digits: str) -> str:
        try:
            return chr(int(digits, 16))
        except ValueError:
            raise self.error(f"bad escape digits {digits!r}") from None

    def parse_number(self) -> JsNumber:
        text = self.text
        start = self.pos
        if self.peek() in "+-":
            self.pos += 1
        if text.startswith(("0x", "0X"), self.pos):
            self.pos += 2
            digits_start = self.pos
            while self.pos < len(text) and text[self.pos] in "0123456789abcdefABCDEF":
                self.pos += 1
            if self.pos == digits_start:
                raise self.error("bad hex literal")
            value = int(text[digits_start : self.pos], 16)
            return JsNumber(-value if text[start] == "-" else value)
        if text.startswith("Infinity", self.pos):
            self.pos += len("Infinity")
            return JsNumber(float("-inf") if text[start] == "-" else float("inf"))
        while self.pos < len(text) and (text[self.pos].isdigit() or text[self.pos] in ".eE"):
            if text[self.pos] in "eE" and self.pos + 1 < len(text) and text[self.pos + 1] in "+-":
                self.pos += 1
            self.pos += 1
        raw = text[start : self.pos]
        try:
            if any(c in raw for c in ".eE"):
                return JsNumber(float(raw))
            return JsNumber(int(raw))
        except ValueError:
            raise self.error(f"bad number {raw!r}") from None

    def skip_expression(self) -> None:
        """Skip an arbitrary expression up to ``,``/``}``/``]`` at depth 0."""
        text = self.text
        depth = 0
        while self.pos < len(text):
            ch = text[self.pos]
            if ch in _QUOTES:
                self.parse_string()
                continue
            if text.startswith("//", self.pos) or text.startswith("/*", self.pos):
                self.skip_trivia()
                continue
            if ch in "([{":
                depth += 1
            elif ch in ")]}":
                if depth == 0:
                    return
                depth -= 1
            elif ch == "," and depth == 0:
                return
            self.pos += 1
        if depth:
            raise self.error("unbalanced expression")


def parse_literal(text: str) -> JsValue:
    """Parse one literal. Raises ParseFailure on malformed input."""
    return _Parser(text).parse_document()


def extract_balanced(text: str, start: int) -> str | None:
    """Return the ``{...}`` beginning at ``text[start]``, quote-aware.

    Braces inside string literals and comments do not count. None when
    the literal never closes.
    """
    if start >= len(text) or text[start] != "{":
        return None
    depth = 0
    quote = ""
    i = start
    n = len(text)
    while i < n:
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = ""
        elif ch in _QUOTES:
            quote = ch
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
            continue
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end == -1:
                return None
            i = end + 2
            continue
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
        i += 1
    return None


def extract_call_argument(html: str, callee: str = "makePlayer") -> JsValue | None:
    """Find ``callee({...})`` in ``html`` and parse its object argument.

    Returns None when the call is absent or its literal never closes;
    raises ParseFailure when the literal is present but malformed.
    """
    marker = f"{callee}("
    idx = html.find(marker)
    while idx != -1:
        brace = idx + len(marker)
        while brace < len(html) and html[brace].isspace():
            brace += 1
        if brace < len(html) and html[brace] == "{":
            literal = extract_balanced(html, brace)
            if literal is None:
                return None
            return parse_literal(literal)
        idx = html.find(marker, idx + 1)
    return None
