import enum
import dataclasses

BOOL = 1
INT8 = 8
INT16 = 16
INT32 = 32
INT64 = 64

# Revision tags used by the patch splitter.
ORIGINAL_REVISION = 0
MERGED_REVISION = 0xffffffffffffffff


class ExpressionKind(enum.Enum):
    CONSTANT = 0
    NOT_OPTIMIZED = 1
    READ = 2
    SELECT = 3
    CONCAT = 4
    EXTRACT = 5
    ZEXT = 6
    SEXT = 7
    NOT = 8
    ADD = 9
    SUB = 10
    MUL = 11
    UDIV = 12
    SDIV = 13
    UREM = 14
    SREM = 15
    AND = 16
    OR = 17
    XOR = 18
    SHL = 19
    LSHR = 20
    ASHR = 21
    EQ = 22
    NE = 23
    ULT = 24
    ULE = 25
    UGT = 26
    UGE = 27
    SLT = 28
    SLE = 29
    SGT = 30
    SGE = 31


ARITHMETIC_KINDS = frozenset({
    ExpressionKind.ADD,
    ExpressionKind.SUB,
    ExpressionKind.MUL,
    ExpressionKind.UDIV,
    ExpressionKind.SDIV,
    ExpressionKind.UREM,
    ExpressionKind.SREM,
    ExpressionKind.AND,
    ExpressionKind.OR,
    ExpressionKind.XOR,
    ExpressionKind.SHL,
    ExpressionKind.LSHR,
    ExpressionKind.ASHR,
})

COMPARISON_KINDS = frozenset({
    ExpressionKind.EQ,
    ExpressionKind.NE,
    ExpressionKind.ULT,
    ExpressionKind.ULE,
    ExpressionKind.UGT,
    ExpressionKind.UGE,
    ExpressionKind.SLT,
    ExpressionKind.SLE,
    ExpressionKind.SGT,
    ExpressionKind.SGE,
})

BINARY_KINDS = ARITHMETIC_KINDS | COMPARISON_KINDS


@dataclasses.dataclass(eq=False)
class Array:
    name: str
    size: int
    constant_values: tuple[int, ...] | None = None
    domain: int = INT32
    range: int = INT8

    @property
    def is_symbolic_array(self) -> bool:
        return self.constant_values is None

    @property
    def is_constant_array(self) -> bool:
        return self.constant_values is not None


@dataclasses.dataclass(frozen=True, eq=False)
class UpdateNode:
    index: 'Expression'
    value: 'Expression'
    next: 'UpdateNode | None' = None


@dataclasses.dataclass(frozen=True)
class UpdateList:
    root: Array
    head: UpdateNode | None = None

    def extend(self, index: 'Expression', value: 'Expression') -> 'UpdateList':
        return UpdateList(root=self.root, head=UpdateNode(index=index, value=value, next=self.head))

    def __iter__(self):
        node = self.head
        while node is not None:
            yield node
            node = node.next


@dataclasses.dataclass(frozen=True, eq=False)
class Expression:
    kind: ExpressionKind
    width: int
    kids: tuple['Expression', ...] = ()
    value: int | None = None
    offset: int | None = None
    updates: UpdateList | None = None
    meta: bool = False
    patches: tuple[int, int] | None = None

    @property
    def is_constant(self) -> bool:
        return self.kind is ExpressionKind.CONSTANT

    @property
    def is_true(self) -> bool:
        return self.is_constant and self.width == BOOL and self.value == 1

    @property
    def is_false(self) -> bool:
        return self.is_constant and self.width == BOOL and self.value == 0

    def __str__(self) -> str:
        from .expr import render
        return render(self)

    def __repr__(self) -> str:
        return f'Expression({self})'
