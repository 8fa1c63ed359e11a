"""
Tokenizer for PostgreSQL's serialized node trees (``pg_node_tree`` text,
as produced by ``nodeToString``).

Tokens are separated by whitespace; ``(``, ``)``, ``{`` and ``}`` are always
tokens on their own; a backslash escapes the following character.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Union

from src.core.exceptions import NodeTreeSyntaxError

_WHITESPACE = " \t\n\r"
_DELIMITERS = "(){}"

_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")


class TokenKind(str, Enum):
    LBRACE = "LBRACE"
    RBRACE = "RBRACE"
    LPAREN = "LPAREN"
    RPAREN = "RPAREN"
    FIELD = "FIELD"        # :name
    NULL = "NULL"          # <>
    STRING = "STRING"      # "quoted"
    INTEGER = "INTEGER"
    FLOAT = "FLOAT"
    WORD = "WORD"          # anything else, escapes removed
    EOF = "EOF"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: Union[str, int, float, None]
    raw: str
    position: int

    def is_word(self, *words: str) -> bool:
        return self.kind == TokenKind.WORD and self.value in words


_PUNCTUATION = {
    "{": TokenKind.LBRACE,
    "}": TokenKind.RBRACE,
    "(": TokenKind.LPAREN,
    ")": TokenKind.RPAREN,
}


def debackslash(raw: str) -> str:
    """Drop the escaping backslashes ``outToken`` adds."""
    if "\\" not in raw:
        return raw
    chars = []
    escaped = False
    for ch in raw:
        if escaped:
            chars.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        else:
            chars.append(ch)
    return "".join(chars)


def classify(raw: str, position: int) -> Token:
    """Turn one raw token into a typed token.

    Classification looks at the raw text, so an escaped leading character
    (``\\1abc``, ``\\"x``) keeps a string from being read as a number or a
    quoted value.
    """
    if raw == "<>":
        return Token(TokenKind.NULL, None, raw, position)
    if raw.startswith(":") and len(raw) > 1:
        return Token(TokenKind.FIELD, raw[1:], raw, position)
    if raw.startswith('"') and len(raw) > 1 and raw.endswith('"'):
        return Token(TokenKind.STRING, debackslash(raw[1:-1]), raw, position)
    if _INTEGER_RE.match(raw):
        return Token(TokenKind.INTEGER, int(raw), raw, position)
    if _FLOAT_RE.match(raw):
        return Token(TokenKind.FLOAT, float(raw), raw, position)
    return Token(TokenKind.WORD, debackslash(raw), raw, position)


def iter_tokens(text: str) -> Iterator[Token]:
    """Yield the tokens of ``text`` followed by a single EOF token."""
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in _WHITESPACE:
            i += 1
            continue
        if ch in _DELIMITERS:
            yield Token(_PUNCTUATION[ch], ch, ch, i)
            i += 1
            continue

        start = i
        while i < n and text[i] not in _WHITESPACE and text[i] not in _DELIMITERS:
            if text[i] == "\\":
                if i + 1 >= n:
                    raise NodeTreeSyntaxError("dangling backslash at end of input", position=i)
                i += 2
            else:
                i += 1
        yield classify(text[start:i], start)

    yield Token(TokenKind.EOF, None, "", n)


def tokenize(text: str) -> List[Token]:
    return list(iter_tokens(text))
