"""Small typed model of an Nginx configuration file.

Rules are compiled into a tree of directives and blocks and only then
serialized, so callers can inspect the structure instead of matching text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Union

INDENT = "    "
_NEEDS_QUOTES = (" ", "\t", ";", "{", "}", "#", '"', "'")


def quote(value: str) -> str:
    """Quote a directive argument when Nginx would otherwise split it."""
    if value and not any(char in value for char in _NEEDS_QUOTES):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


@dataclass(frozen=True)
class Directive:
    name: str
    args: tuple[str, ...] = ()

    def render(self, depth: int) -> list[str]:
        parts = " ".join((self.name, *self.args)).rstrip()
        return [f"{INDENT * depth}{parts};"]


@dataclass(frozen=True)
class Comment:
    text: str

    def render(self, depth: int) -> list[str]:
        return [f"{INDENT * depth}# {line}".rstrip() for line in self.text.splitlines()]


@dataclass(frozen=True)
class Raw:
    """Verbatim user-supplied lines, re-indented to the current depth."""

    text: str

    def render(self, depth: int) -> list[str]:
        lines = [line.strip() for line in self.text.strip().splitlines()]
        return [f"{INDENT * depth}{line}" if line else "" for line in lines]


@dataclass
class Block:
    name: str
    args: tuple[str, ...] = ()
    children: list["Node"] = field(default_factory=list)

    def add(self, name: str, *args: str) -> "Block":
        self.children.append(Directive(name, tuple(str(arg) for arg in args)))
        return self

    def comment(self, text: str) -> "Block":
        self.children.append(Comment(text))
        return self

    def raw(self, text: str) -> "Block":
        if text.strip():
            self.children.append(Raw(text))
        return self

    def block(self, name: str, *args: str) -> "Block":
        child = Block(name, tuple(str(arg) for arg in args))
        self.children.append(child)
        return child

    def directives(self, name: str | None = None) -> Iterator[Directive]:
        for child in self.children:
            if isinstance(child, Directive) and (name is None or child.name == name):
                yield child
            elif isinstance(child, Block):
                yield from child.directives(name)

    def blocks(self, name: str | None = None) -> Iterator["Block"]:
        for child in self.children:
            if isinstance(child, Block):
                if name is None or child.name == name:
                    yield child
                yield from child.blocks(name)

    def render(self, depth: int) -> list[str]:
        header = " ".join((self.name, *self.args))
        lines = [f"{INDENT * depth}{header} {{"]
        for child in self.children:
            lines.extend(child.render(depth + 1))
        lines.append(f"{INDENT * depth}}}")
        return lines


Node = Union[Directive, Comment, Raw, Block]


@dataclass
class ConfigFile:
    """Top level of one generated file: a sequence of nodes at depth zero."""

    nodes: list[Node] = field(default_factory=list)

    def add(self, name: str, *args: str) -> "ConfigFile":
        self.nodes.append(Directive(name, tuple(str(arg) for arg in args)))
        return self

    def comment(self, text: str) -> "ConfigFile":
        self.nodes.append(Comment(text))
        return self

    def block(self, name: str, *args: str) -> Block:
        child = Block(name, tuple(str(arg) for arg in args))
        self.nodes.append(child)
        return child

    def directives(self, name: str | None = None) -> Iterator[Directive]:
        for node in self.nodes:
            if isinstance(node, Directive) and (name is None or node.name == name):
                yield node
            elif isinstance(node, Block):
                yield from node.directives(name)

    def blocks(self, name: str | None = None) -> Iterator[Block]:
        for node in self.nodes:
            if isinstance(node, Block):
                if name is None or node.name == name:
                    yield node
                yield from node.blocks(name)

    def render(self) -> str:
        chunks: list[str] = []
        for node in self.nodes:
            lines = node.render(0)
            if isinstance(node, Block) and chunks and chunks[-1] != "":
                chunks.append("")
            chunks.extend(lines)
        return "\n".join(chunks) + "\n"
