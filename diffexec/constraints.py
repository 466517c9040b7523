from collections.abc import Iterable, Iterator

from . import data
from .errors import InvariantViolation


class ConstraintSet:
    """Ordered, duplicate free conjunction of boolean expressions known to hold on a path."""

    def __init__(self, constraints: Iterable[data.Expression] = ()):
        self._constraints: list[data.Expression] = []
        self._members: set[data.Expression] = set()
        for constraint in constraints:
            self.push(constraint)

    def push(self, constraint: data.Expression) -> None:
        if constraint not in self._members:
            self._members.add(constraint)
            self._constraints.append(constraint)

    def __iter__(self) -> Iterator[data.Expression]:
        return iter(self._constraints)

    def __len__(self) -> int:
        return len(self._constraints)

    def __contains__(self, constraint: data.Expression) -> bool:
        return constraint in self._members

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConstraintSet):
            return NotImplemented
        return self._constraints == other._constraints

    def copy(self) -> 'ConstraintSet':
        return ConstraintSet(self._constraints)

    def __str__(self) -> str:
        return '[' + ', '.join(map(str, self._constraints)) + ']'


class ConstraintManager:
    def __init__(self, constraints: ConstraintSet):
        self.constraints = constraints

    def add_constraint(self, constraint: data.Expression) -> None:
        if constraint.width != data.BOOL:
            raise InvariantViolation(f'constraint {constraint} is not boolean')
        stack = [constraint]
        while stack:
            current = stack.pop()
            if current.is_true:
                continue
            if current.is_false:
                raise InvariantViolation('attempt to add invalid (false) constraint')
            if current.kind is data.ExpressionKind.AND and not current.meta:
                stack.extend(reversed(current.kids))
                continue
            self.constraints.push(current)
