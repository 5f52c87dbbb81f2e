"""
Structural addresses and selective-run targets.

Every node's address is the tuple of its sibling indices from the root,
written ``[3:1:0]``. A run target names a spec file plus either an address
(``specs/math.py[3:1:0]``) or a source line (``specs/math.py:42``).
"""

import os
import re
from dataclasses import dataclass
from typing import Optional, Union

from spek.spek_datatypes import Address, ContextNode, Node, UnknownAddress, InvalidOptions

_ADDRESS_RE = re.compile(r'^\[\s*(\d+(?:\s*:\s*\d+)*)?\s*\]$')
_TARGET_RE = re.compile(r'^(?P<file>.*?)(?:(?P<address>\[[\d:\s]*\])|:(?P<line>\d+))?$')


@dataclass(frozen=True)
class Target:
    """A parsed run target; at most one of ``address`` and ``line`` is set."""
    file: Optional[str]
    address: Optional[Address] = None
    line: Optional[int] = None


def format_address(address: Address) -> str:
    return "[" + ":".join(str(i) for i in address) + "]"


def parse_address(text: str) -> Address:
    """``"[3:1:0]"`` → ``(3, 1, 0)``. ``"[]"`` is the root."""
    m = _ADDRESS_RE.match(text.strip())
    if not m:
        raise InvalidOptions(f"malformed address {text!r}; expected [i:j:k]")
    body = m.group(1)
    if not body:
        return ()
    return tuple(int(part) for part in body.split(":"))


def parse_target(text: str) -> Target:
    text = text.strip()
    m = _TARGET_RE.match(text)
    # The pattern always matches; an empty file part means "this suite".
    file = m.group("file") or None
    if m.group("address") is not None:
        return Target(file, address=parse_address(m.group("address")))
    if m.group("line") is not None:
        return Target(file, line=int(m.group("line")))
    return Target(file)


def coerce_address(value: Union[str, Address, Node]) -> Address:
    match value:
        case Node():
            return value.address
        case tuple():
            if not all(isinstance(i, int) and not isinstance(i, bool) and i >= 0 for i in value):
                raise InvalidOptions(f"malformed address {value!r}")
            return value
        case str():
            target = parse_target(value)
            if target.line is not None:
                raise InvalidOptions(
                    f"line target {value!r} must be resolved to a node before running (see node_at_line)"
                )
            if target.address is None:
                raise InvalidOptions(f"target {value!r} carries no address")
            return target.address
    raise InvalidOptions(f"cannot use {value!r} as an address")


def find_node(root: ContextNode, address: Address) -> Node:
    node: Node = root
    for depth, index in enumerate(address):
        children = getattr(node, "children", None)
        if not children or index >= len(children):
            raise UnknownAddress(format_address(address[:depth + 1]))
        node = children[index]
    return node


def _same_file(a: str, b: str) -> bool:
    try:
        return os.path.samefile(a, b)
    except OSError:
        return os.path.normpath(os.path.abspath(a)) == os.path.normpath(os.path.abspath(b))


def node_at_line(root: ContextNode, line: int, file: Optional[str] = None) -> Node:
    """Finds the node declared closest above ``line``.

    Only the first line of each builder or body is known, so this picks the
    last node (in declaration order) with the greatest declaring line that
    does not exceed ``line``. When ``file`` is given, nodes declared in other
    files are ignored.
    """
    best: Optional[Node] = None
    for node in root.walk():
        if node.line is None or node.line > line:
            continue
        if file is not None and (node.file is None or not _same_file(node.file, file)):
            continue
        if best is None or node.line >= best.line:
            best = node
    if best is None:
        raise UnknownAddress(f"{file or ''}:{line}")
    return best
