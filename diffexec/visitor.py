from collections.abc import Iterable

from . import data


class ExpressionVisitor:
    """Depth-first walk over an expression DAG that enters each node once.

    The memo lives on the visitor, so visiting several roots with one
    instance shares it. Subclasses override the ``visit_*`` hooks; a hook
    may return further expressions to walk, which join the same explicit
    stack, so arbitrarily deep inputs never grow the Python call stack.
    """

    def __init__(self):
        self._visited: set[data.Expression] = set()

    def visit(self, expression: data.Expression) -> None:
        stack = [expression]
        while stack:
            node = stack.pop()
            if node in self._visited:
                continue
            self._visited.add(node)
            if node.kind is data.ExpressionKind.READ:
                extra = self.visit_read(node)
            else:
                extra = self.visit_expression(node)
            if extra:
                stack.extend(extra)
            stack.extend(reversed(node.kids))

    def visit_read(self, read: data.Expression) -> Iterable[data.Expression] | None:
        return None

    def visit_expression(self, expression: data.Expression) -> Iterable[data.Expression] | None:
        return None
