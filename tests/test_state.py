import io
import itertools
import logging

import pytest

from diffexec import data
from diffexec import expr
from diffexec.config import Options
from diffexec.errors import InvariantViolation
from diffexec.exprutil import split_expr
from diffexec.memory import MemoryObject, ObjectState
from diffexec.state import ExecutionState, MergeHandler, UnwindingInformation, UnwindingKind


def _branch(state, cond):
    other = state.fork()
    state.add_constraint(cond)
    other.add_constraint(expr.not_(cond))
    return other


def _holds(constraints, assignment):
    return all(expr.evaluate(c, assignment) for c in constraints)


def test_fork_copies_state_and_assigns_fresh_id(state, byte_of):
    state.stack[0].locals[0] = byte_of(0)
    state.covered_new = True
    state.covered_lines['main.c'] = {10}
    state.add_constraint(expr.ult(byte_of(0), expr.constant(9, data.INT8)))

    child = state.fork()

    assert state.depth == 1
    assert child.depth == 1
    assert child.id > state.id
    assert child.pc is state.pc
    assert not child.covered_new
    assert child.covered_lines == {}
    assert state.covered_lines == {'main.c': {10}}
    assert list(child.constraints) == list(state.constraints)
    child.stack[0].locals[0] = byte_of(1)
    assert state.stack[0].locals[0] is byte_of(0)


def test_fork_ids_increase_monotonically(state):
    first = state.fork()
    second = state.fork()
    assert state.id < first.id < second.id


def test_fork_clones_unwinding_information(state):
    state.unwinding_information = UnwindingInformation(
        kind=UnwindingKind.CLEANUP_PHASE, exception_object=None, catching_stack_index=2, selected_handler=1)
    child = state.fork()
    assert child.unwinding_information == state.unwinding_information
    assert child.unwinding_information is not state.unwinding_information


def test_fork_registers_copy_with_open_merge_handlers(state):
    handler = MergeHandler()
    state.open_merge(handler)
    child = state.fork()
    assert handler.open_states == [state, child]
    child.terminate()
    assert handler.open_states == [state]
    assert child.stack == []


def test_merge_registration_releases_on_exit(state):
    handler = MergeHandler()
    with state.open_merge(handler):
        assert handler.open_states == [state]
    assert handler.open_states == []
    assert state.open_merge_stack == []


def test_nested_registration_with_same_handler_closes_one_at_a_time(state):
    handler = MergeHandler()
    state.open_merge(handler)
    state.open_merge(handler)
    state.close_merge(handler)
    assert handler.open_states == [state]
    assert state.open_merge_stack == [handler]
    state.close_merge(handler)
    assert handler.open_states == []


def test_fork_shares_memory_until_written(state, bind):
    buffer = bind(1, b'\x01')
    child = state.fork()
    with pytest.raises(InvariantViolation):
        child.address_space.bind_object(buffer, child.address_space.find_object(buffer))

    writeable = child.address_space.get_writeable(buffer, child.address_space.find_object(buffer))
    writeable.write8(0, expr.constant(9, data.INT8))
    assert state.address_space.find_object(buffer).read8(0).value == 1
    assert child.address_space.find_object(buffer).read8(0).value == 9


def test_pop_frame_unbinds_allocas(state, helper_function):
    state.push_frame(state.pc, helper_function)
    local = MemoryObject(id=3, address=0x3000, size=4, is_local=True)
    state.address_space.bind_object(local, ObjectState(local))
    state.stack[-1].allocas.append(local)
    state.pop_frame()
    assert state.address_space.find_object(local) is None
    assert len(state.stack) == 1


def test_merge_rejects_different_pc(state, main_function):
    other = state.fork()
    other.pc = main_function.instructions[1]
    assert not state.merge(other)


def test_merge_rejects_different_stack_depth_without_mutation(state, helper_function, byte_of):
    state.stack[0].locals[0] = byte_of(0)
    other = state.fork()
    other.stack[0].locals[0] = byte_of(1)
    other.push_frame(other.pc, helper_function)
    constraints = list(state.constraints)

    assert not state.merge(other)
    assert state.stack[0].locals[0] is byte_of(0)
    assert other.stack[0].locals[0] is byte_of(1)
    assert list(state.constraints) == constraints
    assert len(other.stack) == 2


def test_merge_rejects_different_symbolics(state, array):
    other = state.fork()
    memory_object = MemoryObject(id=1, address=0x1000, size=4)
    other.add_symbolic(memory_object, array)
    assert not state.merge(other)


def test_merge_rejects_missing_binding(state, bind):
    bind(1, b'\x00')
    other = state.fork()
    bind(2, b'\x00', other)
    assert not state.merge(other)
    assert not other.merge(state)


def test_merge_rejects_different_bindings(state, bind):
    other = state.fork()
    bind(1, b'\x00')
    bind(2, b'\x00', other)
    assert not state.merge(other)


def test_merge_builds_selects_for_registers(state, array, byte_of):
    cond = expr.eq(byte_of(0), expr.constant(1, data.INT8))
    other = _branch(state, cond)
    state.stack[0].locals[1] = expr.constant(10, data.INT8)
    other.stack[0].locals[1] = expr.constant(20, data.INT8)
    state.stack[0].locals[2] = byte_of(1)
    other.stack[0].locals[2] = byte_of(1)
    state.stack[0].locals[3] = byte_of(2)

    assert state.merge(other)

    merged = state.stack[0].locals[1]
    assert merged.kind is data.ExpressionKind.SELECT
    assert expr.evaluate(merged, {array: bytes([1, 0, 0, 0])}) == 10
    assert expr.evaluate(merged, {array: bytes([0, 0, 0, 0])}) == 20
    assert state.stack[0].locals[2] is byte_of(1)
    assert state.stack[0].locals[3] is byte_of(2)
    assert other.stack[0].locals[1] is expr.constant(20, data.INT8)


def test_merge_selects_mutated_memory_byte(state, array, byte_of, bind):
    shared = bind(1, b'\x05\x06')
    cond = expr.ult(byte_of(0), expr.constant(0x80, data.INT8))
    other = _branch(state, cond)
    for target, value in ((state, 0xaa), (other, 0xbb)):
        object_state = target.address_space.find_object(shared)
        target.address_space.get_writeable(shared, object_state).write8(1, expr.constant(value, data.INT8))
    a_suffix = list(state.constraints)
    b_suffix = list(other.constraints)
    other_state = other.address_space.find_object(shared)

    assert state.merge(other)

    merged_state = state.address_space.find_object(shared)
    assert merged_state.read8(0) is expr.constant(5, data.INT8)
    merged_byte = merged_state.read8(1)
    assert merged_byte.kind is data.ExpressionKind.SELECT
    for assignment in ({array: bytes([0x10])}, {array: bytes([0x90])}):
        assert _holds(state.constraints, assignment)
        if _holds(a_suffix, assignment):
            assert expr.evaluate(merged_byte, assignment) == 0xaa
        if _holds(b_suffix, assignment):
            assert expr.evaluate(merged_byte, assignment) == 0xbb
    assert other.address_space.find_object(shared) is other_state
    assert other_state.read8(1) is expr.constant(0xbb, data.INT8)


def test_merge_keeps_common_prefix_and_disjunction(state, array, byte_of):
    prefix = expr.ne(byte_of(1), expr.constant(0, data.INT8))
    state.add_constraint(prefix)
    cond = expr.eq(byte_of(0), expr.constant(1, data.INT8))
    other = _branch(state, cond)

    assert state.merge(other)

    constraints = list(state.constraints)
    assert constraints[0] is prefix
    assert len(constraints) == 2
    assert constraints[1].kind is data.ExpressionKind.OR


def test_merge_is_commutative_up_to_logical_equivalence(main_function, array, byte_of):
    root = ExecutionState(main_function)
    root.add_constraint(expr.ult(byte_of(1), expr.constant(4, data.INT8)))
    a = root
    b = _branch(root, expr.eq(byte_of(0), expr.constant(3, data.INT8)))
    a_copy, b_copy = a.fork(), b.fork()

    assert a.merge(b)
    assert b_copy.merge(a_copy)

    for first, second in itertools.product(range(6), repeat=2):
        assignment = {array: bytes([first, second])}
        assert _holds(a.constraints, assignment) == _holds(b_copy.constraints, assignment)


def test_merge_of_revisions_produces_splittable_values(main_function, byte_of):
    revision_a = ExecutionState(main_function, patch_no=1)
    revision_b = revision_a.fork()
    revision_b.patch_no = 2
    revision_a.add_constraint(expr.eq(byte_of(0), expr.constant(0, data.INT8)))
    revision_b.add_constraint(expr.ne(byte_of(0), expr.constant(0, data.INT8)))
    revision_a.stack[0].locals[0] = byte_of(1)
    revision_b.stack[0].locals[0] = byte_of(2)

    assert revision_a.merge(revision_b)

    merged = revision_a.stack[0].locals[0]
    assert merged.meta
    assert split_expr(merged) == [(1, byte_of(1)), (2, byte_of(2))]


def test_merge_rejects_read_only_mutation(state, bind):
    shared = bind(1, b'\x00')
    other = state.fork()
    replacement = ObjectState(shared, b'\x01')
    replacement.read_only = True
    state.address_space.bind_object(shared, replacement)
    with pytest.raises(InvariantViolation):
        state.merge(other)


def test_merge_logging_is_opt_in(main_function, caplog):
    quiet = ExecutionState(main_function)
    traced = ExecutionState(main_function, options=Options(debug_log_state_merge=True))
    with caplog.at_level(logging.DEBUG, logger='diffexec.state'):
        quiet.merge(quiet.fork())
        assert 'attempting merge' not in caplog.text
        traced.merge(traced.fork())
        assert 'attempting merge' in caplog.text


def test_dump_stack(state, helper_function, byte_of):
    state.stack[0].locals[0] = expr.constant(2, data.INT32)
    state.stack[0].locals[1] = byte_of(0)
    call_site = state.pc
    state.push_frame(call_site, helper_function)
    state.prev_pc = helper_function.instructions[1]
    state.stack[1].locals[0] = expr.constant(7, data.INT32)

    out = io.StringIO()
    state.dump_stack(out)

    assert out.getvalue() == (
        '\t#000000201 in helper(n=(w32 7)) at helper.c:4\n'
        '\t#100000100 in main(argc=(w32 2), argv=symbolic) at main.c:10\n'
    )


def test_dump_stack_with_locals(main_function, byte_of):
    state = ExecutionState(main_function, options=Options(output_locals_on_error=True))
    local = MemoryObject(id=4, address=0x4000, size=1, name='x', is_local=True)
    state.address_space.bind_object(local, ObjectState(local, b'\x2a'))
    state.stack[0].allocas.append(local)

    out = io.StringIO()
    state.dump_stack(out)

    assert 'Stack Content:\n' in out.getvalue()
    assert 'main (stack): x (local):\n' in out.getvalue()
    assert '\t\t\t0 -> (w8 42)\n' in out.getvalue()
    assert 'main' in state.function_state_info.state_info


def test_add_state_info_as_return(state, bind):
    written = bind(5, b'\x01')
    state.stack[0].non_locals_written[written] = (expr.constant(0, data.INT64), expr.constant(1, data.INT8))
    state.add_state_info_as_return(state.pc)
    info = state.function_state_info.state_info['main']
    assert 'main (exited): obj5[(w64 0)]: (non-local, written)' in info
