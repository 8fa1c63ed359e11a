"""
Reader for PostgreSQL's serialized node trees.

``read_node_tree`` turns the text stored in ``pg_constraint.conbin``,
``pg_index.indexprs``/``indpred`` or ``pg_rewrite.ev_action`` into plain
Python values:

    {TAG :field value ...}   -> PgNode(tag, fields)
    <>                       -> None
    (item ...)               -> list
    (i 1 2) / (o 1 2)        -> list of int
    (b 1 2)                  -> frozenset (Bitmapset)
    "text"                   -> str (String value node)
    42 / 1.5 / true          -> int / float / bool
    4 [ 16 0 0 0 ]           -> bytes (Const datum)
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from src.core.exceptions import NodeTreeSyntaxError
from .tokenizer import Token, TokenKind, tokenize

logger = logging.getLogger(__name__)

_INT_LIST_MARKERS = ("i", "o", "x")
_BITMAPSET_MARKER = "b"


@dataclass
class PgNode:
    """One node of a parsed expression or query tree."""
    tag: str
    fields: Dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def __getitem__(self, name: str) -> Any:
        return self.fields[name]

    def __contains__(self, name: str) -> bool:
        return name in self.fields

    def is_a(self, *tags: str) -> bool:
        return self.tag in tags

    def children(self, names: Optional[tuple] = None) -> Iterator[Any]:
        """Yield node-valued and list-valued fields.

        Args:
            names: restrict to these fields; all fields when omitted
        """
        if names is None:
            values = self.fields.values()
        else:
            values = (self.fields.get(name) for name in names)
        for value in values:
            if isinstance(value, (PgNode, list)):
                yield value


def node(tag: str, **fields: Any) -> PgNode:
    """Build a node by hand, mostly useful for fixtures."""
    return PgNode(tag, dict(fields))


class NodeTreeReader:
    """Recursive descent reader over the token stream."""

    def __init__(self, text: str):
        self.text = text
        self.tokens: List[Token] = tokenize(text)
        self.pos = 0

    def read(self) -> Any:
        value = self._read_item()
        tok = self._peek()
        if tok.kind != TokenKind.EOF:
            raise NodeTreeSyntaxError(f"unexpected trailing token {tok.raw!r}", position=tok.position)
        return value

    def _peek(self) -> Token:
        return self.tokens[self.pos]

    def _next(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.kind != TokenKind.EOF:
            self.pos += 1
        return tok

    def _read_item(self) -> Any:
        tok = self._next()
        kind = tok.kind
        if kind == TokenKind.LBRACE:
            return self._read_node(tok)
        if kind == TokenKind.LPAREN:
            return self._read_list(tok)
        if kind == TokenKind.NULL:
            return None
        if kind in (TokenKind.STRING, TokenKind.INTEGER, TokenKind.FLOAT):
            return tok.value
        if kind == TokenKind.WORD:
            if tok.value == "true":
                return True
            if tok.value == "false":
                return False
            return tok.value
        if kind == TokenKind.FIELD:
            # a string value that happens to start with ':'
            return tok.raw
        if kind == TokenKind.EOF:
            raise NodeTreeSyntaxError("unexpected end of node tree", position=tok.position)
        raise NodeTreeSyntaxError(f"unexpected token {tok.raw!r}", position=tok.position)

    def _read_node(self, start: Token) -> PgNode:
        tag_tok = self._next()
        if tag_tok.kind != TokenKind.WORD:
            raise NodeTreeSyntaxError(f"expected node tag after '{{', got {tag_tok.raw!r}",
                                      position=tag_tok.position)
        result = PgNode(tag_tok.value)

        while True:
            tok = self._next()
            if tok.kind == TokenKind.RBRACE:
                return result
            if tok.kind == TokenKind.EOF:
                raise NodeTreeSyntaxError(f"unterminated {result.tag} node", position=start.position)
            if tok.kind != TokenKind.FIELD:
                raise NodeTreeSyntaxError(f"expected field name in {result.tag} node, got {tok.raw!r}",
                                          position=tok.position)
            if self._peek().kind in (TokenKind.RBRACE, TokenKind.EOF):
                raise NodeTreeSyntaxError(f"missing value for :{tok.value} in {result.tag} node",
                                          position=tok.position)
            result.fields[tok.value] = self._read_field_value()

    def _read_field_value(self) -> Any:
        value = self._read_item()
        # Const datums are written as "<length> [ b1 b2 ... ]"
        if type(value) is int and self._peek().is_word("["):
            return self._read_datum(value)
        return value

    def _read_datum(self, length: int) -> bytes:
        open_tok = self._next()
        data = bytearray()
        while True:
            tok = self._next()
            if tok.is_word("]"):
                break
            if tok.kind != TokenKind.INTEGER:
                raise NodeTreeSyntaxError(f"bad datum byte {tok.raw!r}", position=tok.position)
            # outDatum prints signed chars
            data.append(tok.value & 0xFF)
        if len(data) != length:
            raise NodeTreeSyntaxError(f"datum has {len(data)} bytes, expected {length}",
                                      position=open_tok.position)
        return bytes(data)

    def _read_list(self, start: Token) -> Any:
        first = self._peek()
        if first.is_word(*_INT_LIST_MARKERS):
            self._next()
            return self._read_int_items(start)
        if first.is_word(_BITMAPSET_MARKER):
            self._next()
            return frozenset(self._read_int_items(start))

        items = []
        while True:
            tok = self._peek()
            if tok.kind == TokenKind.RPAREN:
                self._next()
                return items
            if tok.kind == TokenKind.EOF:
                raise NodeTreeSyntaxError("unterminated list", position=start.position)
            items.append(self._read_item())

    def _read_int_items(self, start: Token) -> List[int]:
        values = []
        while True:
            tok = self._next()
            if tok.kind == TokenKind.RPAREN:
                return values
            if tok.kind != TokenKind.INTEGER:
                raise NodeTreeSyntaxError(f"expected integer in list, got {tok.raw!r}",
                                          position=tok.position if tok.kind != TokenKind.EOF
                                          else start.position)
            values.append(tok.value)


def read_node_tree(text: str) -> Any:
    """Parse one serialized node tree.

    Raises:
        NodeTreeSyntaxError: the text is not a well-formed node tree
    """
    if text is None or not text.strip():
        raise NodeTreeSyntaxError("empty node tree")
    logger.debug("Reading node tree of %d characters", len(text))
    return NodeTreeReader(text).read()
