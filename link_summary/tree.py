"""Minimal mdast-style document tree used by the link-summary pass."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

_SCALAR_FIELDS = ("value", "url", "title")
_KNOWN_FIELDS = ("type", "children", *_SCALAR_FIELDS)


@dataclass(slots=True)
class Node:
    """A document node.

    Leaf nodes leave ``children`` as ``None``; parent nodes expose an ordered,
    mutable list that visitors may edit in place. Properties outside the
    common mdast fields (``depth``, ``position``, ...) are kept in ``props``.
    """

    type: str
    children: list[Node] | None = None
    value: str | None = None
    url: str | None = None
    title: str | None = None
    props: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Node:
        if not isinstance(data, Mapping) or not isinstance(data.get("type"), str):
            raise ValueError("mdast node must be an object with a string 'type'")
        raw_children = data.get("children")
        children = None
        if raw_children is not None:
            if not isinstance(raw_children, list):
                raise ValueError(f"'children' of {data['type']} node must be a list")
            children = [cls.from_dict(child) for child in raw_children]
        return cls(
            type=data["type"],
            children=children,
            value=data.get("value"),
            url=data.get("url"),
            title=data.get("title"),
            # Explicit nulls on known fields (remark emits "title": null) stay in props.
            props={
                key: value
                for key, value in data.items()
                if key not in _KNOWN_FIELDS or (key in _SCALAR_FIELDS and value is None)
            },
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        for key in _SCALAR_FIELDS:
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        payload.update({key: value for key, value in self.props.items() if key not in payload})
        if self.children is not None:
            payload["children"] = [child.to_dict() for child in self.children]
        return payload

    def replace_child(self, old: Node, new: Node) -> None:
        """Swap ``old`` (matched by identity) for ``new`` at the same position."""

        if self.children is None:
            raise ValueError(f"{self.type} node has no children")
        for index, child in enumerate(self.children):
            if child is old:
                self.children[index] = new
                return
        raise ValueError(f"node is not a child of this {self.type} node")


def html(value: str) -> Node:
    return Node(type="html", value=value)


def text(value: str) -> Node:
    return Node(type="text", value=value)


def link(url: str, *children: Node, title: str | None = None) -> Node:
    return Node(type="link", url=url, title=title, children=list(children))


def parent(node_type: str, *children: Node, **props: Any) -> Node:
    return Node(type=node_type, children=list(children), props=dict(props))


def link_text(node: Node) -> str:
    """Concatenate the text content below ``node``."""

    if node.children is None:
        return node.value or ""
    return "".join(link_text(child) for child in node.children)


__all__ = ["Node", "html", "text", "link", "parent", "link_text"]
