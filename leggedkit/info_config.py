"""Reader for INFO-format configuration files (``key value`` lines and ``{ }`` blocks)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

InfoTree = dict
InfoValue = Union[str, dict]

_ESCAPES = {
    "0": "\0",
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    '"': '"',
    "'": "'",
    "\\": "\\",
}


class InfoParseError(ValueError):
    """Raised for malformed INFO text."""


@dataclass
class _Node:
    value: str = ""
    children: list = field(default_factory=list)


def _tokenize_line(line: str, lineno: int) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos, end = 0, len(line)
    while pos < end:
        ch = line[pos]
        if ch.isspace():
            pos += 1
        elif ch == ";":
            break
        elif ch == "{":
            tokens.append(("open", ch))
            pos += 1
        elif ch == "}":
            tokens.append(("close", ch))
            pos += 1
        elif ch == '"':
            pos += 1
            chars = []
            while True:
                if pos >= end:
                    raise InfoParseError(f"line {lineno}: unterminated string")
                c = line[pos]
                if c == '"':
                    pos += 1
                    break
                if c == "\\":
                    if pos + 1 >= end or line[pos + 1] not in _ESCAPES:
                        raise InfoParseError(f"line {lineno}: invalid escape sequence")
                    chars.append(_ESCAPES[line[pos + 1]])
                    pos += 2
                    continue
                chars.append(c)
                pos += 1
            tokens.append(("string", "".join(chars)))
        else:
            start = pos
            while pos < end and not line[pos].isspace() and line[pos] not in '{};"':
                pos += 1
            tokens.append(("word", line[start:pos]))
    return tokens


def _parse(text: str, base_dir: Path) -> _Node:
    root = _Node()
    stack = [root]
    last: _Node | None = None
    for lineno, line in enumerate(text.splitlines(), start=1):
        tokens = _tokenize_line(line, lineno)
        if tokens and tokens[0] == ("word", "#include"):
            if len(tokens) != 2 or tokens[1][0] not in ("word", "string"):
                raise InfoParseError(f"line {lineno}: #include needs one file name")
            included = base_dir / tokens[1][1]
            sub = _parse(included.read_text(), included.parent)
            stack[-1].children.extend(sub.children)
            last = None
            continue
        index = 0
        while index < len(tokens):
            kind, text_value = tokens[index]
            index += 1
            if kind == "open":
                if last is None:
                    raise InfoParseError(f"line {lineno}: '{{' without a key")
                stack.append(last)
                last = None
            elif kind == "close":
                if len(stack) == 1:
                    raise InfoParseError(f"line {lineno}: unmatched '}}'")
                stack.pop()
                last = None
            else:
                node = _Node()
                if index < len(tokens) and tokens[index][0] in ("word", "string"):
                    node.value = tokens[index][1]
                    index += 1
                if index < len(tokens) and tokens[index][0] in ("word", "string"):
                    raise InfoParseError(f"line {lineno}: unexpected text after value")
                stack[-1].children.append((text_value, node))
                last = node
    if len(stack) > 1:
        raise InfoParseError("unclosed '{' at end of input")
    return root


def _to_tree(node: _Node) -> InfoTree:
    tree: InfoTree = {}
    for key, child in node.children:
        if key in tree:
            continue
        if child.children:
            sub = _to_tree(child)
            if child.value:
                sub.setdefault("", child.value)
            tree[key] = sub
        else:
            tree[key] = child.value
    return tree


def parse_info(text: str) -> InfoTree:
    """Parse INFO text into nested dicts of strings.

    A key with both a value and children maps to a dict holding the value under "".
    Of repeated keys the first one wins. Includes resolve against the working directory.
    """
    return _to_tree(_parse(text, Path(os.getcwd())))


def load_info(path) -> InfoTree:
    """Read and parse an INFO file; includes resolve against its directory."""
    file_path = Path(path)
    return _to_tree(_parse(file_path.read_text(), file_path.parent))


def lookup(tree: InfoTree, key: str) -> InfoValue:
    """Node at a dotted path such as ``kalmanFilter.footRadius``; raises KeyError if absent."""
    node: InfoValue = tree
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(key)
        node = node[part]
    return node