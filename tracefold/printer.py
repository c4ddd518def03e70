"""Exception tree printer.

The walk is a depth-first traversal driven by an explicit stack, so graph
depth is not limited by the interpreter's recursion limit. Each node is
printed completely (header, frames, elision marker) before any of its
children. Suppressed children come first, in order, indented one tab deeper;
the cause follows at the node's own indentation.

A node reached a second time prints a ``[CIRCULAR REFERENCE: ...]`` marker
instead of its body, which bounds the walk on cyclic graphs.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from tracefold.config import ColorRole, RenderConfig
from tracefold.duplicates import DuplicateItem, find_duplicates
from tracefold.frames import Frame, is_similar
from tracefold.graph import (
    SUPPRESSED_CAPTION,
    GraphNode,
    cause_of,
    header_of,
    node_string,
    notes_of,
    suppressed_of,
)
from tracefold.resolver import resolve_frames
from tracefold.sinks import Sink


@dataclass(frozen=True)
class _Visit:
    node: GraphNode
    enclosing: Sequence[Frame] | None
    prefix: str
    caption: str | None


class TreePrinter:
    """Prints one exception graph to a sink under one configuration snapshot."""

    def __init__(self, sink: Sink, config: RenderConfig) -> None:
        self.sink = sink.bind(config)
        self.config = config
        style = config.style.impl
        self.style = style
        self.tab = config.indent
        self.at = style.at
        self.at_duplicate = style.at_duplicate
        self._visited: dict[int, GraphNode] = {}
        self._display_ids: dict[int, int] = {}
        # nodes that received a display id, kept alive so ids are never reused
        self._numbered: list[GraphNode] = []

    def display_id(self, node: GraphNode) -> int:
        key = id(node)
        number = self._display_ids.get(key)
        if number is None:
            number = len(self._display_ids)
            self._display_ids[key] = number
            self._numbered.append(node)
        return number

    # ------------------------------------------------------------------
    # walk
    # ------------------------------------------------------------------

    def print_tree(self, root: GraphNode) -> None:
        with self.sink.lock():
            enclosing: Sequence[Frame] | None = [] if self.config.fold_enabled else None
            stack = [_Visit(root, enclosing, "", None)]
            while stack:
                visit = stack.pop()
                stack.extend(reversed(self._print_node(visit)))

    def _print_node(self, visit: _Visit) -> list[_Visit]:
        sink = self.sink
        node, prefix = visit.node, visit.prefix
        if visit.caption is not None:
            sink.print(prefix)
            sink.write(ColorRole.CAPTION, visit.caption)
            sink.write(ColorRole.PUNCTUATION, ": ")

        if id(node) in self._visited:
            self._print_circular(node, prefix)
            return []
        self._visited[id(node)] = node
        if self.config.throwable_id_visible:
            self.display_id(node)

        frames = resolve_frames(node, self.config)
        length = len(frames)
        explicit = length
        in_common = 0
        if visit.enclosing is not None:
            a, b = length - 1, len(visit.enclosing) - 1
            while a >= 0 and b >= 0 and is_similar(frames[a], visit.enclosing[b]):
                a -= 1
                b -= 1
            in_common = length - 1 - a
            explicit = a + 1

        self.print_header(node, prefix)
        sink.println()
        for note in notes_of(node):
            for line in note.splitlines() or [""]:
                sink.print(prefix)
                sink.write(ColorRole.MESSAGE, line)
                sink.println()

        duplicates: list[DuplicateItem] = []
        if self.config.check_duplicate_trace_enabled:
            duplicates = find_duplicates(
                frames,
                explicit,
                self.config.duplicate_trace_max_size,
                hash_only=self.config.only_compare_hash_enabled,
            )
        self._print_frames(frames, explicit, duplicates, prefix)

        if in_common:
            self._print_more(prefix, None, in_common)

        child_enclosing = frames if visit.enclosing is not None else None
        children = [
            _Visit(child, child_enclosing, prefix + self.tab, SUPPRESSED_CAPTION)
            for child in suppressed_of(node)
        ]
        cause, caption = cause_of(node)
        if cause is not None:
            children.append(_Visit(cause, child_enclosing, prefix, caption))
        return children

    # ------------------------------------------------------------------
    # pieces
    # ------------------------------------------------------------------

    def _print_frames(
        self, frames: Sequence[Frame], explicit: int, duplicates: list[DuplicateItem], prefix: str
    ) -> None:
        pending = iter(duplicates)
        upcoming = next(pending, None)
        i = 0
        while i < explicit:
            if upcoming is not None and upcoming.index == i:
                for k in range(upcoming.size):
                    self._print_frame(frames[i + k], prefix, self.at_duplicate)
                self._print_more(prefix, self.at_duplicate, upcoming.count - 1)
                i = upcoming.end
                upcoming = next(pending, None)
            else:
                self._print_frame(frames[i], prefix, self.at)
                i += 1

    def _print_frame(self, frame: Frame, prefix: str, marker: str) -> None:
        sink = self.sink
        sink.print(prefix)
        sink.print(self.tab)
        sink.write(ColorRole.AT, marker)
        sink.print(self.style.render_frame(frame, self.config))
        sink.reset_last_color()
        sink.println()

    def _print_more(self, prefix: str, marker: str | None, count: int) -> None:
        sink = self.sink
        sink.print(prefix)
        sink.print(self.tab)
        if marker is not None:
            sink.write(ColorRole.AT, marker)
        sink.write(ColorRole.PUNCTUATION, "... ")
        sink.write(ColorRole.NUMBER, str(count))
        sink.write(ColorRole.TEXT, " more")
        sink.println()

    def _print_circular(self, node: GraphNode, prefix: str) -> None:
        sink = self.sink
        sink.write(ColorRole.PUNCTUATION, "[")
        sink.write(ColorRole.CAPTION, "CIRCULAR REFERENCE")
        sink.write(ColorRole.PUNCTUATION, ": ")
        if not self.print_header(node, prefix):
            sink.println()
            sink.print(prefix)
        sink.write(ColorRole.PUNCTUATION, "]")
        sink.color(ColorRole.TEXT)
        sink.println()

    def print_header(self, node: GraphNode, prefix: str) -> bool:
        """Print the merged ``Type: message`` lines of ``node``; True when one line was printed.

        Causes whose own string is contained in the root's string are folded
        into the header, one per line. A message equal to the next merged
        cause's string is dropped.
        """
        sink = self.sink
        root_string = node_string(node)
        chain = [node]
        strings = [root_string]
        seen = {id(node)}
        current: GraphNode | None = node
        while True:
            current, _ = cause_of(current)
            if current is None or id(current) in seen:
                break
            cause_string = node_string(current)
            if cause_string not in root_string:
                break
            seen.add(id(current))
            chain.append(current)
            strings.append(cause_string)

        headers = [header_of(link) for link in chain]
        messages = [message for _, message in headers]
        for i in range(len(chain) - 2, -1, -1):
            if messages[i] is not None and messages[i] == strings[i + 1]:
                messages[i] = None

        for i, (link, (name, _)) in enumerate(zip(chain, headers)):
            if i:
                sink.print(prefix)
                sink.print(self.tab)
            package, dot, simple = name.rpartition(".")
            if dot:
                for segment in package.split("."):
                    sink.write(ColorRole.PACKAGE, segment)
                    sink.write(ColorRole.PUNCTUATION, ".")
            sink.write(ColorRole.TYPE_NAME, simple)
            if self.config.throwable_id_visible:
                sink.write(ColorRole.PUNCTUATION, "<")
                sink.write(ColorRole.NUMBER, str(self.display_id(link)))
                sink.write(ColorRole.PUNCTUATION, ">")
            if messages[i] is not None:
                sink.write(ColorRole.PUNCTUATION, ": ")
                sink.write(ColorRole.MESSAGE, messages[i])
            if i + 1 != len(chain):
                sink.println()
        return len(chain) == 1


__all__ = ["TreePrinter"]
