"""Tests for the serialized node tree tokenizer and reader."""
import pytest

from src.core.exceptions import CorruptCatalogError, NodeTreeSyntaxError
from src.nodetree.reader import PgNode, read_node_tree
from src.nodetree.tokenizer import TokenKind, tokenize

from conftest import CHECK_NOT_EMPTY


def test_tokenize_kinds():
    """Each token class is recognized."""
    tokens = tokenize('{VAR :varno 1 :x <> :f 1.5 :s "abc" :w true (b 1)}')
    kinds = [tok.kind for tok in tokens]
    assert kinds == [
        TokenKind.LBRACE, TokenKind.WORD,
        TokenKind.FIELD, TokenKind.INTEGER,
        TokenKind.FIELD, TokenKind.NULL,
        TokenKind.FIELD, TokenKind.FLOAT,
        TokenKind.FIELD, TokenKind.STRING,
        TokenKind.FIELD, TokenKind.WORD,
        TokenKind.LPAREN, TokenKind.WORD, TokenKind.INTEGER, TokenKind.RPAREN,
        TokenKind.RBRACE, TokenKind.EOF,
    ]
    assert tokens[9].value == "abc"


def test_tokenize_escapes():
    """Escaped characters stay inside their token and lose the backslash."""
    tokens = tokenize(r"a\ b \{x\} \1")
    assert [tok.value for tok in tokens[:-1]] == ["a b", "{x}", "1"]
    # an escaped digit is a word, not a number
    assert tokens[2].kind == TokenKind.WORD


def test_tokenize_dangling_backslash():
    with pytest.raises(NodeTreeSyntaxError):
        tokenize("abc\\")


def test_read_check_constraint():
    """A real conbin value is read into nested nodes."""
    tree = read_node_tree(CHECK_NOT_EMPTY)

    assert isinstance(tree, PgNode)
    assert tree.tag == "OPEXPR"
    assert tree["inputcollid"] == 100
    assert tree["opretset"] is False

    var, const = tree["args"]
    assert var.is_a("VAR")
    assert var["varnullingrels"] == frozenset()
    assert const["constvalue"] == bytes([16, 0, 0, 0])


def test_read_lists():
    """Integer lists, bitmapsets and node lists."""
    tree = read_node_tree("{X :a (i 1 2 3) :b (o 100 950) :c (b 4 2) :d ({Y} {Z}) :e ()}")

    assert tree["a"] == [1, 2, 3]
    assert tree["b"] == [100, 950]
    assert tree["c"] == frozenset({2, 4})
    assert [n.tag for n in tree["d"]] == ["Y", "Z"]
    assert tree["e"] == []


def test_read_top_level_list():
    """Index expressions are stored as a list of nodes."""
    exprs = read_node_tree("({VAR :varno 1} <> {CONST :constisnull true :constvalue <>})")

    assert len(exprs) == 3
    assert exprs[1] is None
    assert exprs[2]["constvalue"] is None


def test_read_signed_datum():
    """outDatum prints bytes as signed chars."""
    tree = read_node_tree("{CONST :constvalue 2 [ -1 127 ]}")
    assert tree["constvalue"] == b"\xff\x7f"


def test_read_string_values():
    tree = read_node_tree('{ALIAS :aliasname t :colnames ("a" "b\\ c")}')
    assert tree["aliasname"] == "t"
    assert tree["colnames"] == ["a", "b c"]


@pytest.mark.parametrize("text", [
    "",
    "   ",
    "{OPEXPR :opno 531",
    "{OPEXPR :opno}",
    "{:opno 1}",
    "{X :a 1 2}",
    "{X :a (1 2}",
    "{X :a (i 1 x)}",
    "{CONST :constvalue 4 [ 1 2 ]}",
    "{X} {Y}",
])
def test_malformed_trees(text):
    """Malformed text is reported as a corrupt catalog entry."""
    with pytest.raises(NodeTreeSyntaxError) as exc_info:
        read_node_tree(text)
    assert isinstance(exc_info.value, CorruptCatalogError)
    assert exc_info.value.code == "NODE_TREE_SYNTAX"
