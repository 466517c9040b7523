import pytest

from diffexec import data
from diffexec import expr
from diffexec.errors import InvariantViolation
from diffexec.memory import AddressSpace, MemoryObject, ObjectState


@pytest.fixture
def buffer():
    return MemoryObject(id=1, address=0x1000, size=4, name='buf')


def test_little_endian_word_access(buffer):
    object_state = ObjectState(buffer, bytes([0x78, 0x56, 0x34, 0x12]))
    assert object_state.read(0, data.INT32) is expr.constant(0x12345678, data.INT32)
    object_state.write(0, expr.constant(0xaabb, data.INT16))
    assert object_state.concrete_bytes() == bytes([0xbb, 0xaa, 0x34, 0x12])


def test_symbolic_contents(buffer, array, byte_of):
    object_state = ObjectState(buffer)
    object_state.make_symbolic(array)
    assert object_state.read8(2) is byte_of(2)
    assert object_state.concrete_bytes() is None


def test_copy_on_write_after_address_space_copy(buffer):
    space = AddressSpace()
    original = ObjectState(buffer, b'\x01\x02\x03\x04')
    space.bind_object(buffer, original)
    assert space.get_writeable(buffer, original) is original

    clone = space.copy()
    writeable = clone.get_writeable(buffer, clone.find_object(buffer))
    assert writeable is not original
    writeable.write8(0, expr.constant(9, data.INT8))
    assert original.read8(0).value == 1
    assert clone.find_object(buffer) is writeable
    assert clone.get_writeable(buffer, writeable) is writeable
    assert space.get_writeable(buffer, original) is not original


def test_shared_state_cannot_be_rebound(buffer):
    space = AddressSpace()
    original = ObjectState(buffer, b'\x01\x02\x03\x04')
    space.bind_object(buffer, original)
    space.bind_object(buffer, original)
    clone = space.copy()
    with pytest.raises(InvariantViolation):
        clone.bind_object(buffer, original)
    with pytest.raises(InvariantViolation):
        space.bind_object(buffer, original)
    assert clone.find_object(buffer) is original


def test_read_only_object_is_not_writeable(buffer):
    space = AddressSpace()
    object_state = ObjectState(buffer)
    object_state.read_only = True
    space.bind_object(buffer, object_state)
    with pytest.raises(InvariantViolation):
        space.get_writeable(buffer, object_state)


def test_objects_are_ordered_by_id_and_resolvable():
    space = AddressSpace()
    late = MemoryObject(id=7, address=0x700, size=8)
    early = MemoryObject(id=2, address=0x200, size=8)
    space.bind_object(late, ObjectState(late))
    space.bind_object(early, ObjectState(early))
    assert [mo.id for mo, _ in space.objects()] == [2, 7]
    assert space.resolve_one(0x704)[0] is late
    assert space.resolve_one(0x900) is None
    space.unbind_object(late)
    assert len(space) == 1
