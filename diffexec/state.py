import dataclasses
import enum
import functools
import itertools
import logging
from typing import TextIO

from . import data
from . import expr
from .config import DEFAULT_OPTIONS, Options
from .constraints import ConstraintManager, ConstraintSet
from .memory import AddressSpace, MemoryObject, ObjectState
from .module import KFunction, KInstruction

logger = logging.getLogger(__name__)


class StackFrame:
    def __init__(self, caller: KInstruction | None, kf: KFunction):
        self.caller = caller
        self.kf = kf
        self.allocas: list[MemoryObject] = []
        self.locals: list[data.Expression | None] = [None] * kf.num_registers
        self.non_locals_read: dict[MemoryObject, tuple[data.Expression, data.Expression]] = {}
        self.non_locals_written: dict[MemoryObject, tuple[data.Expression, data.Expression]] = {}

    def copy(self) -> 'StackFrame':
        frame = StackFrame(self.caller, self.kf)
        frame.allocas = list(self.allocas)
        frame.locals = list(self.locals)
        frame.non_locals_read = dict(self.non_locals_read)
        frame.non_locals_written = dict(self.non_locals_written)
        return frame


class UnwindingKind(enum.Enum):
    SEARCH_PHASE = 0
    CLEANUP_PHASE = 1


@dataclasses.dataclass
class UnwindingInformation:
    kind: UnwindingKind
    exception_object: MemoryObject | None
    # Search phase: index of the frame being inspected.
    unwinding_progress: int = 0
    # Cleanup phase: frame that will catch and the handler it selected.
    catching_stack_index: int = 0
    selected_handler: int = 0

    def clone(self) -> 'UnwindingInformation':
        match self.kind:
            case UnwindingKind.SEARCH_PHASE:
                return UnwindingInformation(
                    kind=self.kind,
                    exception_object=self.exception_object,
                    unwinding_progress=self.unwinding_progress
                )
            case UnwindingKind.CLEANUP_PHASE:
                return UnwindingInformation(
                    kind=self.kind,
                    exception_object=self.exception_object,
                    catching_stack_index=self.catching_stack_index,
                    selected_handler=self.selected_handler
                )


class FunctionStateInfo:
    def __init__(self):
        self.state_info: dict[str, str] = {}

    def add_state_info(self, function: str, info: str) -> None:
        self.state_info[function] = info

    def copy(self) -> 'FunctionStateInfo':
        clone = FunctionStateInfo()
        clone.state_info = dict(self.state_info)
        return clone

    def print(self, out: TextIO) -> None:
        for function, info in self.state_info.items():
            out.write(f'{function}:\n{info}')


class MergeHandler:
    """Rendezvous point for states that are expected to reach the same location."""

    def __init__(self):
        self.open_states: list['ExecutionState'] = []

    def add_open_state(self, state: 'ExecutionState') -> None:
        self.open_states.append(state)

    def remove_open_state(self, state: 'ExecutionState') -> None:
        for i, open_state in enumerate(self.open_states):
            if open_state is state:
                del self.open_states[i]
                return


@dataclasses.dataclass
class MergeRegistration:
    handler: MergeHandler
    state: 'ExecutionState'

    def release(self) -> None:
        self.state.close_merge(self.handler)

    def __enter__(self) -> 'MergeRegistration':
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


class ExecutionState:
    _next_id = itertools.count(1)

    def __init__(self, kf: KFunction, patch_no: int = data.ORIGINAL_REVISION, options: Options | None = None):
        self.options = options or DEFAULT_OPTIONS
        self.patch_no = patch_no
        self.pc: KInstruction = kf.instructions[0]
        self.prev_pc: KInstruction = self.pc
        self.stack: list[StackFrame] = []
        self.depth = 0
        self.address_space = AddressSpace()
        self.constraints = ConstraintSet()
        self.covered_lines: dict[str, set[int]] = {}
        self.symbolics: list[tuple[MemoryObject, data.Array]] = []
        self.cex_preferences: set[data.Expression] = set()
        self.array_names: set[str] = set()
        self.open_merge_stack: list[MergeHandler] = []
        self.unwinding_information: UnwindingInformation | None = None
        self.covered_new = False
        self.function_state_info = FunctionStateInfo()
        self.id = next(ExecutionState._next_id)
        self.push_frame(None, kf)

    def _copy(self) -> 'ExecutionState':
        state = ExecutionState.__new__(ExecutionState)
        state.options = self.options
        state.patch_no = self.patch_no
        state.pc = self.pc
        state.prev_pc = self.prev_pc
        state.stack = [frame.copy() for frame in self.stack]
        state.depth = self.depth
        state.address_space = self.address_space.copy()
        state.constraints = self.constraints.copy()
        state.covered_lines = {file: set(lines) for file, lines in self.covered_lines.items()}
        state.symbolics = list(self.symbolics)
        state.cex_preferences = set(self.cex_preferences)
        state.array_names = set(self.array_names)
        state.open_merge_stack = list(self.open_merge_stack)
        state.unwinding_information = self.unwinding_information.clone() if self.unwinding_information else None
        state.covered_new = self.covered_new
        state.function_state_info = self.function_state_info.copy()
        state.id = self.id
        for handler in state.open_merge_stack:
            handler.add_open_state(state)
        return state

    def fork(self) -> 'ExecutionState':
        self.depth += 1
        state = self._copy()
        state.id = next(ExecutionState._next_id)
        state.covered_new = False
        state.covered_lines.clear()
        logger.debug('forked state %d into %d at depth %d', self.id, state.id, self.depth)
        return state

    def terminate(self) -> None:
        for handler in self.open_merge_stack:
            handler.remove_open_state(self)
        self.open_merge_stack.clear()
        while self.stack:
            self.pop_frame()
        logger.debug('terminated state %d', self.id)

    def open_merge(self, handler: MergeHandler) -> MergeRegistration:
        self.open_merge_stack.append(handler)
        handler.add_open_state(self)
        return MergeRegistration(handler=handler, state=self)

    def close_merge(self, handler: MergeHandler) -> None:
        if handler in self.open_merge_stack:
            self.open_merge_stack.remove(handler)
            handler.remove_open_state(self)

    def push_frame(self, caller: KInstruction | None, kf: KFunction) -> None:
        self.stack.append(StackFrame(caller, kf))

    def pop_frame(self) -> None:
        frame = self.stack.pop()
        for memory_object in frame.allocas:
            self.address_space.unbind_object(memory_object)

    def add_symbolic(self, memory_object: MemoryObject, array: data.Array) -> None:
        self.symbolics.append((memory_object, array))
        self.array_names.add(array.name)

    def add_constraint(self, constraint: data.Expression) -> None:
        ConstraintManager(self.constraints).add_constraint(constraint)

    def add_cex_preference(self, cond: data.Expression) -> None:
        self.cex_preferences.add(cond)

    def _same_symbolics(self, other: 'ExecutionState') -> bool:
        return len(self.symbolics) == len(other.symbolics) and all(
            a_object is b_object and a_array is b_array
            for (a_object, a_array), (b_object, b_array) in zip(self.symbolics, other.symbolics))

    def _same_stack_shape(self, other: 'ExecutionState') -> bool:
        return len(self.stack) == len(other.stack) and all(
            a.caller == b.caller and a.kf is b.kf for a, b in zip(self.stack, other.stack))

    def _trace(self, message: str, *args) -> None:
        if self.options.debug_log_state_merge:
            logger.debug(message, *args)

    def _merged_value(self, in_a: data.Expression, a: data.Expression, b: data.Expression,
                      other: 'ExecutionState') -> data.Expression:
        if a is b:
            return a
        if self.patch_no != other.patch_no:
            return expr.patch_select(in_a, a, b, self.patch_no, other.patch_no)
        return expr.select(in_a, a, b)

    def merge(self, b: 'ExecutionState') -> bool:
        self._trace('-- attempting merge of A:%d with B:%d--', self.id, b.id)
        if self.pc != b.pc:
            return False
        if not self._same_symbolics(b):
            return False
        if not self._same_stack_shape(b):
            return False

        b_constraints = set(b.constraints)
        common = [c for c in self.constraints if c in b_constraints]
        common_set = set(common)
        a_suffix = [c for c in self.constraints if c not in common_set]
        b_suffix = [c for c in b.constraints if c not in common_set]
        self._trace('\tconstraint prefix: [%s]', ', '.join(map(str, common)))
        self._trace('\tA suffix: [%s]', ', '.join(map(str, a_suffix)))
        self._trace('\tB suffix: [%s]', ', '.join(map(str, b_suffix)))

        # Addresses must resolve identically in both states: objects created since
        # the fork must be gone, and no pre-existing object may be freed in only one.
        self._trace('\tchecking object states')
        self._trace('A: %s', self.address_space)
        self._trace('B: %s', b.address_space)
        mutated: list[MemoryObject] = []
        for a_item, b_item in itertools.zip_longest(self.address_space.objects(), b.address_space.objects()):
            if a_item is None or b_item is None:
                self._trace('\t\tmappings differ')
                return False
            (a_object, a_state), (b_object, b_state) = a_item, b_item
            if a_object is not b_object:
                if a_object.id < b_object.id:
                    self._trace('\t\tB misses binding for: %d', a_object.id)
                else:
                    self._trace('\t\tA misses binding for: %d', b_object.id)
                return False
            if a_state is not b_state:
                self._trace('\t\tmutated: %d', a_object.id)
                mutated.append(a_object)

        in_a = functools.reduce(expr.and_, a_suffix, expr.true())
        in_b = functools.reduce(expr.and_, b_suffix, expr.true())

        for a_frame, b_frame in zip(self.stack, b.stack):
            for i, (a_value, b_value) in enumerate(zip(a_frame.locals, b_frame.locals)):
                # A register undefined on either side cannot be live here.
                if a_value is not None and b_value is not None:
                    a_frame.locals[i] = self._merged_value(in_a, a_value, b_value, b)

        for memory_object in mutated:
            object_state = self.address_space.find_object(memory_object)
            other_state = b.address_space.find_object(memory_object)
            writeable = self.address_space.get_writeable(memory_object, object_state)
            for i in range(memory_object.size):
                merged = self._merged_value(in_a, writeable.read8(i), other_state.read8(i), b)
                writeable.write8(i, merged)

        self.constraints = ConstraintSet()
        manager = ConstraintManager(self.constraints)
        for constraint in common:
            manager.add_constraint(constraint)
        manager.add_constraint(expr.or_(in_a, in_b))
        self._trace('\tmerged into A:%d with constraints %s', self.id, self.constraints)
        return True

    def dump_stack(self, out: TextIO) -> None:
        target = self.prev_pc
        for idx, frame in enumerate(reversed(self.stack)):
            kf = frame.kf
            args = []
            for index, name in enumerate(kf.arg_names):
                value = frame.locals[kf.get_arg_register(index)]
                rendered = str(value) if value is not None and value.is_constant else 'symbolic'
                args.append(f'{name}={rendered}' if name else rendered)
            location = f' at {target.file}:{target.line}' if target.file else ''
            out.write(f'\t#{idx}{target.assembly_line:08d} in {kf.name}({", ".join(args)}){location}\n')
            target = frame.caller

        if not self.options.output_locals_on_error:
            return

        out.write('Stack Content:\n')
        target = self.prev_pc
        for frame in reversed(self.stack):
            lines: list[str] = []
            self._dump_frame(lines, frame, target)
            self.function_state_info.add_state_info(frame.kf.name, ''.join(lines))
            target = frame.caller
        self.function_state_info.print(out)

    def add_state_info_as_return(self, target: KInstruction) -> None:
        lines: list[str] = []
        frame = self.stack[-1]
        self._dump_frame(lines, frame, target, on_stack=False)
        self.function_state_info.add_state_info(target.function or frame.kf.name, ''.join(lines))

    def _dump_frame(self, lines: list[str], frame: StackFrame, target: KInstruction | None,
                    on_stack: bool = True) -> None:
        if target is not None and 'libc' in target.file:
            return
        name = frame.kf.name
        where = '(stack)' if on_stack else '(exited)'
        lines.append(f'{name}:\n')

        for memory_object in frame.allocas:
            object_state = self.address_space.find_object(memory_object)
            if object_state is None:
                continue
            lines.append(f'{name} {where}: {memory_object.name} (local):\n')
            self._dump_object_state(lines, object_state)

        for memory_object, (offset, _) in frame.non_locals_read.items():
            object_state = self.address_space.find_object(memory_object)
            if object_state is None:
                continue
            lines.append(f'{name} {where}: {memory_object.name}[{offset}] (non-local, read):\n')
            self._dump_object_state(lines, object_state)

        for memory_object, (offset, _) in frame.non_locals_written.items():
            if self.address_space.find_object(memory_object) is None:
                continue
            lines.append(f'{name} {where}: {memory_object.name}[{offset}]: (non-local, written)\n\n')

    @staticmethod
    def _dump_object_state(lines: list[str], object_state: ObjectState, prefix: str = '') -> None:
        lines.append(f'{prefix}\tSize: {object_state.size}\n')
        for i in range(object_state.size):
            lines.append(f'{prefix}\t\t\t{i} -> {object_state.read8(i)}\n')

    def __str__(self) -> str:
        return f'ExecutionState(id={self.id}, pc={self.pc.id}, depth={self.depth}, patch_no={self.patch_no})'
