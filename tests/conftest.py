import pytest

from diffexec import data
from diffexec import expr
from diffexec.memory import MemoryObject, ObjectState
from diffexec.module import KFunction, KInstruction
from diffexec.state import ExecutionState


@pytest.fixture
def array():
    return data.Array(name='input', size=4)


@pytest.fixture
def byte_of(array):
    updates = data.UpdateList(root=array)

    def make(index: int) -> data.Expression:
        return expr.read(updates, expr.constant(index, data.INT32))

    return make


@pytest.fixture
def main_function():
    instructions = [KInstruction(id=i, function='main', file='main.c', line=10 + i, assembly_line=100 + i)
                    for i in range(4)]
    return KFunction(name='main', num_registers=4, instructions=instructions,
                     arg_registers=[0, 1], arg_names=['argc', 'argv'])


@pytest.fixture
def helper_function():
    instructions = [KInstruction(id=50 + i, function='helper', file='helper.c', line=3 + i, assembly_line=200 + i)
                    for i in range(2)]
    return KFunction(name='helper', num_registers=2, instructions=instructions,
                     arg_registers=[0], arg_names=['n'])


@pytest.fixture
def state(main_function):
    return ExecutionState(main_function)


@pytest.fixture
def bind(state):
    def make(object_id: int, contents: bytes, target: ExecutionState = state) -> MemoryObject:
        memory_object = MemoryObject(id=object_id, address=0x1000 * object_id, size=len(contents),
                                     name=f'obj{object_id}')
        target.address_space.bind_object(memory_object, ObjectState(memory_object, contents))
        return memory_object

    return make
