import itertools
from collections.abc import Iterable

from . import data
from . import expr
from .errors import InvariantViolation
from .visitor import ExpressionVisitor

Kind = data.ExpressionKind

SplitResult = list[tuple[int, data.Expression]]


def find_reads(expression: data.Expression, visit_updates: bool) -> list[data.Expression]:
    # Everything on the stack is non-constant and already in visited.
    stack: list[data.Expression] = []
    visited: set[data.Expression] = set()
    updates: set[data.UpdateNode] = set()
    results: list[data.Expression] = []

    def push(node: data.Expression) -> None:
        if not node.is_constant and node not in visited:
            visited.add(node)
            stack.append(node)

    push(expression)
    while stack:
        top = stack.pop()
        if top.kind is Kind.READ:
            results.append(top)
            push(top.kids[0])
            if visit_updates:
                # Histories share tails; stop at the first write already walked.
                for node in top.updates:
                    if node in updates:
                        break
                    updates.add(node)
                    push(node.index)
                    push(node.value)
        else:
            for kid in top.kids:
                push(kid)
    return results


class _ArrayFinder(ExpressionVisitor):
    def __init__(self):
        super().__init__()
        self.results: list[data.Array] = []
        self._seen: set[data.Array] = set()
        self._updates: set[data.UpdateNode] = set()

    def visit_read(self, read: data.Expression) -> list[data.Expression]:
        root = read.updates.root
        if self.wants(root) and root not in self._seen:
            self._seen.add(root)
            self.results.append(root)
        pending = []
        for node in read.updates:
            if node in self._updates:
                break
            self._updates.add(node)
            pending.append(node.value)
            pending.append(node.index)
        return pending

    def wants(self, array: data.Array) -> bool:
        raise NotImplementedError


class SymbolicObjectFinder(_ArrayFinder):
    def wants(self, array: data.Array) -> bool:
        return array.is_symbolic_array


class ConstantArrayFinder(_ArrayFinder):
    def wants(self, array: data.Array) -> bool:
        return array.is_constant_array


def _find_arrays(finder: _ArrayFinder,
                 expressions: data.Expression | Iterable[data.Expression]) -> list[data.Array]:
    if isinstance(expressions, data.Expression):
        expressions = (expressions,)
    for expression in expressions:
        finder.visit(expression)
    return finder.results


def find_symbolic_objects(expressions: data.Expression | Iterable[data.Expression]) -> list[data.Array]:
    return _find_arrays(SymbolicObjectFinder(), expressions)


def find_constant_arrays(expressions: data.Expression | Iterable[data.Expression]) -> list[data.Array]:
    return _find_arrays(ConstantArrayFinder(), expressions)


def is_real_revision(patch_no: int) -> bool:
    return data.ORIGINAL_REVISION < patch_no < data.MERGED_REVISION


def pick_patch_no(m: int, n: int) -> int:
    # Two different real revisions resolve to the first operand; this is not flagged as a conflict.
    if is_real_revision(n) and not is_real_revision(m):
        return n
    return m


def _pick_all(*patch_numbers: int) -> int:
    patch_no, *rest = patch_numbers
    for other in rest:
        patch_no = pick_patch_no(patch_no, other)
    return patch_no


def _split_product(rebuild, *children: data.Expression) -> SplitResult:
    splits = [split_expr(child) for child in children]
    return [
        (_pick_all(*(patch_no for patch_no, _ in combination)), rebuild(*(e for _, e in combination)))
        for combination in itertools.product(*splits)
    ]


def split_expr(expression: data.Expression | None) -> SplitResult:
    if expression is None:
        return []
    if not expression.meta:
        return [(data.ORIGINAL_REVISION, expression)]

    match expression.kind:
        case Kind.CONSTANT:
            return [(data.ORIGINAL_REVISION, expression)]
        case Kind.NOT_OPTIMIZED:
            return _split_product(expr.not_optimized, *expression.kids)
        case Kind.READ:
            updates = expression.updates
            return _split_product(lambda index: expr.read(updates, index), *expression.kids)
        case Kind.SELECT if expression.patches is not None:
            _, true_expr, false_expr = expression.kids
            true_patch, false_patch = expression.patches
            return [
                *((pick_patch_no(true_patch, patch_no), e) for patch_no, e in split_expr(true_expr)),
                *((pick_patch_no(false_patch, patch_no), e) for patch_no, e in split_expr(false_expr)),
            ]
        case Kind.SELECT:
            return _split_product(expr.select, *expression.kids)
        case Kind.CONCAT:
            return _split_product(expr.concat, *expression.kids)
        case Kind.EXTRACT:
            offset, width = expression.offset, expression.width
            return _split_product(lambda e: expr.extract(e, offset, width), *expression.kids)
        case Kind.ZEXT:
            width = expression.width
            return _split_product(lambda e: expr.zext(e, width), *expression.kids)
        case Kind.SEXT:
            width = expression.width
            return _split_product(lambda e: expr.sext(e, width), *expression.kids)
        case Kind.NOT:
            return _split_product(expr.not_, *expression.kids)
        case kind if kind in data.BINARY_KINDS:
            return _split_product(lambda left, right: expr.binary(kind, left, right), *expression.kids)
        case _:
            raise InvariantViolation(f'cannot split expression of kind {expression.kind}')
