import functools
import weakref

from . import data
from .errors import InvariantViolation

Kind = data.ExpressionKind

# Content-addressed table: a structurally equal node is never built twice.
_interned: 'weakref.WeakValueDictionary[tuple, data.Expression]' = weakref.WeakValueDictionary()

_KIND_NAMES = {
    Kind.NOT_OPTIMIZED: 'NotOptimized',
    Kind.READ: 'Read',
    Kind.SELECT: 'Select',
    Kind.CONCAT: 'Concat',
    Kind.EXTRACT: 'Extract',
    Kind.ZEXT: 'ZExt',
    Kind.SEXT: 'SExt',
    Kind.NOT: 'Not',
    Kind.ADD: 'Add',
    Kind.SUB: 'Sub',
    Kind.MUL: 'Mul',
    Kind.UDIV: 'UDiv',
    Kind.SDIV: 'SDiv',
    Kind.UREM: 'URem',
    Kind.SREM: 'SRem',
    Kind.AND: 'And',
    Kind.OR: 'Or',
    Kind.XOR: 'Xor',
    Kind.SHL: 'Shl',
    Kind.LSHR: 'LShr',
    Kind.ASHR: 'AShr',
    Kind.EQ: 'Eq',
    Kind.NE: 'Ne',
    Kind.ULT: 'Ult',
    Kind.ULE: 'Ule',
    Kind.UGT: 'Ugt',
    Kind.UGE: 'Uge',
    Kind.SLT: 'Slt',
    Kind.SLE: 'Sle',
    Kind.SGT: 'Sgt',
    Kind.SGE: 'Sge',
}


def _mask(width: int) -> int:
    return (1 << width) - 1


def _signed(value: int, width: int) -> int:
    return value - (1 << width) if value >> (width - 1) & 1 else value


def _make(kind: data.ExpressionKind, width: int, kids: tuple[data.Expression, ...] = (), *,
          value: int | None = None, offset: int | None = None, updates: data.UpdateList | None = None,
          meta: bool = False, patches: tuple[int, int] | None = None) -> data.Expression:
    meta = meta or any(kid.meta for kid in kids)
    key = (kind, width, kids, value, offset, updates, meta, patches)
    expression = _interned.get(key)
    if expression is None:
        expression = data.Expression(
            kind=kind,
            width=width,
            kids=kids,
            value=value,
            offset=offset,
            updates=updates,
            meta=meta,
            patches=patches
        )
        _interned[key] = expression
    return expression


def constant(value: int, width: int) -> data.Expression:
    return _make(Kind.CONSTANT, width, value=value & _mask(width))


def true() -> data.Expression:
    return constant(1, data.BOOL)


def false() -> data.Expression:
    return constant(0, data.BOOL)


def pointer(value: int) -> data.Expression:
    return constant(value, data.INT64)


def not_optimized(src: data.Expression, meta: bool = False) -> data.Expression:
    return _make(Kind.NOT_OPTIMIZED, src.width, (src,), meta=meta)


def read(updates: data.UpdateList, index: data.Expression, meta: bool = False) -> data.Expression:
    if index.is_constant and not meta:
        folded = _fold_read(updates, index.value)
        if folded is not None:
            return folded
    return _make(Kind.READ, updates.root.range, (index,), updates=updates, meta=meta)


def _fold_read(updates: data.UpdateList, index: int) -> data.Expression | None:
    for node in updates:
        if not node.index.is_constant:
            return None
        if node.index.value == index:
            return node.value
    root = updates.root
    if root.is_constant_array and index < len(root.constant_values):
        return constant(root.constant_values[index], root.range)
    return None


def select(cond: data.Expression, true_expr: data.Expression, false_expr: data.Expression,
           meta: bool = False) -> data.Expression:
    if not meta:
        if cond.is_constant:
            return true_expr if cond.value else false_expr
        if true_expr is false_expr:
            return true_expr
    return _make(Kind.SELECT, true_expr.width, (cond, true_expr, false_expr), meta=meta)


def patch_select(cond: data.Expression, true_expr: data.Expression, false_expr: data.Expression,
                 true_patch: int | None, false_patch: int | None) -> data.Expression:
    if true_patch is None or false_patch is None:
        raise InvariantViolation('revision select built without both patch indices')
    return _make(Kind.SELECT, true_expr.width, (cond, true_expr, false_expr), meta=True,
                 patches=(true_patch, false_patch))


def concat(msb: data.Expression, lsb: data.Expression, meta: bool = False) -> data.Expression:
    width = msb.width + lsb.width
    if msb.is_constant and lsb.is_constant:
        return constant(msb.value << lsb.width | lsb.value, width)
    return _make(Kind.CONCAT, width, (msb, lsb), meta=meta)


def concat_bytes(*exprs: data.Expression) -> data.Expression:
    return functools.reduce(concat, exprs)


def extract(expr: data.Expression, offset: int, width: int, meta: bool = False) -> data.Expression:
    if not meta:
        if offset == 0 and width == expr.width:
            return expr
        if expr.is_constant:
            return constant(expr.value >> offset, width)
    return _make(Kind.EXTRACT, width, (expr,), offset=offset, meta=meta)


def zext(expr: data.Expression, width: int, meta: bool = False) -> data.Expression:
    if not meta:
        if width == expr.width:
            return expr
        if width < expr.width:
            return extract(expr, 0, width)
        if expr.is_constant:
            return constant(expr.value, width)
    return _make(Kind.ZEXT, width, (expr,), meta=meta)


def sext(expr: data.Expression, width: int, meta: bool = False) -> data.Expression:
    if not meta:
        if width == expr.width:
            return expr
        if width < expr.width:
            return extract(expr, 0, width)
        if expr.is_constant:
            return constant(_signed(expr.value, expr.width), width)
    return _make(Kind.SEXT, width, (expr,), meta=meta)


def not_(expr: data.Expression, meta: bool = False) -> data.Expression:
    if not meta:
        if expr.is_constant:
            return constant(~expr.value, expr.width)
        if expr.kind is Kind.NOT:
            return expr.kids[0]
    return _make(Kind.NOT, expr.width, (expr,), meta=meta)


def binary(kind: data.ExpressionKind, left: data.Expression, right: data.Expression,
           meta: bool = False) -> data.Expression:
    if kind not in data.BINARY_KINDS:
        raise InvariantViolation(f'{kind} is not a binary expression kind')
    width = data.BOOL if kind in data.COMPARISON_KINDS else left.width
    if not meta:
        if left.is_constant and right.is_constant:
            folded = _apply(kind, left.value, right.value, left.width)
            if folded is not None:
                return constant(folded, width)
        if kind in (Kind.AND, Kind.OR) and width == data.BOOL:
            simplified = _simplify_logic(kind, left, right)
            if simplified is not None:
                return simplified
    return _make(kind, width, (left, right), meta=meta)


def _simplify_logic(kind: data.ExpressionKind, left: data.Expression,
                    right: data.Expression) -> data.Expression | None:
    for const, other in ((left, right), (right, left)):
        if not const.is_constant:
            continue
        absorbing = const.is_false if kind is Kind.AND else const.is_true
        return const if absorbing else other
    if left is right:
        return left
    return None


add = functools.partial(binary, Kind.ADD)
sub = functools.partial(binary, Kind.SUB)
mul = functools.partial(binary, Kind.MUL)
udiv = functools.partial(binary, Kind.UDIV)
sdiv = functools.partial(binary, Kind.SDIV)
urem = functools.partial(binary, Kind.UREM)
srem = functools.partial(binary, Kind.SREM)
and_ = functools.partial(binary, Kind.AND)
or_ = functools.partial(binary, Kind.OR)
xor = functools.partial(binary, Kind.XOR)
shl = functools.partial(binary, Kind.SHL)
lshr = functools.partial(binary, Kind.LSHR)
ashr = functools.partial(binary, Kind.ASHR)
eq = functools.partial(binary, Kind.EQ)
ne = functools.partial(binary, Kind.NE)
ult = functools.partial(binary, Kind.ULT)
ule = functools.partial(binary, Kind.ULE)
ugt = functools.partial(binary, Kind.UGT)
uge = functools.partial(binary, Kind.UGE)
slt = functools.partial(binary, Kind.SLT)
sle = functools.partial(binary, Kind.SLE)
sgt = functools.partial(binary, Kind.SGT)
sge = functools.partial(binary, Kind.SGE)


def _apply(kind: data.ExpressionKind, a: int, b: int, width: int) -> int | None:
    """Concrete semantics of a binary operator on unsigned operands of ``width`` bits.

    Returns ``None`` for division or remainder by zero.
    """
    sa, sb = _signed(a, width), _signed(b, width)
    match kind:
        case Kind.ADD:
            return a + b
        case Kind.SUB:
            return a - b
        case Kind.MUL:
            return a * b
        case Kind.UDIV:
            return a // b if b else None
        case Kind.UREM:
            return a % b if b else None
        case Kind.SDIV:
            if not sb:
                return None
            quotient = abs(sa) // abs(sb)
            return -quotient if (sa < 0) != (sb < 0) else quotient
        case Kind.SREM:
            if not sb:
                return None
            remainder = abs(sa) % abs(sb)
            return -remainder if sa < 0 else remainder
        case Kind.AND:
            return a & b
        case Kind.OR:
            return a | b
        case Kind.XOR:
            return a ^ b
        case Kind.SHL:
            return a << b if b < width else 0
        case Kind.LSHR:
            return a >> b if b < width else 0
        case Kind.ASHR:
            return sa >> min(b, width - 1)
        case Kind.EQ:
            return int(a == b)
        case Kind.NE:
            return int(a != b)
        case Kind.ULT:
            return int(a < b)
        case Kind.ULE:
            return int(a <= b)
        case Kind.UGT:
            return int(a > b)
        case Kind.UGE:
            return int(a >= b)
        case Kind.SLT:
            return int(sa < sb)
        case Kind.SLE:
            return int(sa <= sb)
        case Kind.SGT:
            return int(sa > sb)
        case Kind.SGE:
            return int(sa >= sb)
        case _:
            raise InvariantViolation(f'{kind} is not a binary expression kind')


def evaluate(expression: data.Expression, assignment: dict[data.Array, bytes]) -> int:
    """Evaluate ``expression`` with every symbolic array bound to the bytes in ``assignment``.

    Bytes missing from the assignment read as zero.
    """

    @functools.cache
    def evaluate_node(node: data.Expression) -> int:
        kids = [evaluate_node(kid) for kid in node.kids] if node.kind is not Kind.SELECT else []
        match node.kind:
            case Kind.CONSTANT:
                return node.value
            case Kind.NOT_OPTIMIZED:
                return kids[0]
            case Kind.READ:
                return evaluate_read(node.updates, kids[0])
            case Kind.SELECT:
                cond, true_expr, false_expr = node.kids
                return evaluate_node(true_expr) if evaluate_node(cond) else evaluate_node(false_expr)
            case Kind.CONCAT:
                return kids[0] << node.kids[1].width | kids[1]
            case Kind.EXTRACT:
                return kids[0] >> node.offset & _mask(node.width)
            case Kind.ZEXT:
                return kids[0]
            case Kind.SEXT:
                return _signed(kids[0], node.kids[0].width) & _mask(node.width)
            case Kind.NOT:
                return ~kids[0] & _mask(node.width)
            case _:
                result = _apply(node.kind, kids[0], kids[1], node.kids[0].width)
                if result is None:
                    raise ZeroDivisionError(render(node))
                return result & _mask(node.width)

    def evaluate_read(updates: data.UpdateList, index: int) -> int:
        for node in updates:
            if evaluate_node(node.index) == index:
                return evaluate_node(node.value)
        root = updates.root
        values = root.constant_values if root.is_constant_array else assignment.get(root, b'')
        return values[index] if index < len(values) else 0

    return evaluate_node(expression)


def render(expression: data.Expression) -> str:
    match expression.kind:
        case Kind.CONSTANT:
            if expression.width == data.BOOL:
                return 'true' if expression.value else 'false'
            return f'(w{expression.width} {expression.value})'
        case Kind.READ:
            return f'(Read w{expression.width} {render(expression.kids[0])} {_render_updates(expression.updates)})'
        case Kind.EXTRACT:
            return f'(Extract w{expression.width} {expression.offset} {render(expression.kids[0])})'
        case _:
            kids = ' '.join(map(render, expression.kids))
            return f'({_KIND_NAMES[expression.kind]} w{expression.width} {kids})'


def _render_updates(updates: data.UpdateList) -> str:
    if updates.head is None:
        return updates.root.name
    writes = ', '.join(f'{render(node.index)}={render(node.value)}' for node in updates)
    return f'[{writes}] @ {updates.root.name}'
