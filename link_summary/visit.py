"""Sequential asynchronous depth-first traversal over document trees."""

from __future__ import annotations

from typing import Awaitable, Callable

from link_summary.tree import Node

Visitor = Callable[[Node, "Node | None"], Awaitable[bool]]
"""Process ``node`` and return ``True`` when its children should be visited.

The second argument is the parent of ``node``, or ``None`` for the root.
"""


async def visit(root: Node, visitor: Visitor) -> None:
    """Walk ``root`` in pre-order, awaiting ``visitor`` once per node.

    A node's children are skipped when the visitor returns ``False`` or the
    node has no (or an empty) child list. Visitor calls never overlap, and
    an exception raised by the visitor aborts the whole walk.
    """

    await _visit_node(root, visitor, None)


async def _visit_node(node: Node, visitor: Visitor, parent: Node | None) -> None:
    if not await visitor(node, parent):
        return
    if not node.children:
        return

    # The visitor may replace children[index] in place, so read by index
    # from the live list after every call.
    index = 0
    while node.children is not None and index < len(node.children):
        await _visit_node(node.children[index], visitor, node)
        index += 1
