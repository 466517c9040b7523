import dataclasses
import itertools
from collections.abc import Iterator

from . import data
from . import expr
from .errors import InvariantViolation


@dataclasses.dataclass(eq=False)
class MemoryObject:
    id: int
    address: int
    size: int
    name: str = 'unnamed'
    alloc_site: str | None = None
    is_local: bool = False

    @property
    def base_expr(self) -> data.Expression:
        return expr.pointer(self.address)

    def contains(self, address: int) -> bool:
        return self.address <= address < self.address + self.size


class ObjectState:
    def __init__(self, memory_object: MemoryObject, contents: bytes | None = None):
        self.object = memory_object
        self.read_only = False
        self.copy_on_write_owner = 0
        contents = contents if contents is not None else bytes(memory_object.size)
        self._bytes = [expr.constant(byte, data.INT8) for byte in contents[:memory_object.size]]
        self._bytes.extend(expr.constant(0, data.INT8) for _ in range(memory_object.size - len(self._bytes)))

    def copy(self) -> 'ObjectState':
        clone = ObjectState.__new__(ObjectState)
        clone.object = self.object
        clone.read_only = self.read_only
        clone.copy_on_write_owner = 0
        clone._bytes = list(self._bytes)
        return clone

    @property
    def size(self) -> int:
        return len(self._bytes)

    def make_symbolic(self, array: data.Array) -> None:
        updates = data.UpdateList(root=array)
        self._bytes = [expr.read(updates, expr.constant(i, array.domain)) for i in range(self.size)]

    def read8(self, offset: int) -> data.Expression:
        return self._bytes[offset]

    def write8(self, offset: int, value: data.Expression) -> None:
        if value.width != data.INT8:
            raise InvariantViolation(f'byte write of {value.width}-bit value')
        self._bytes[offset] = value

    def read(self, offset: int, width: int) -> data.Expression:
        if width == data.BOOL:
            return expr.extract(self.read8(offset), 0, data.BOOL)
        count = width // 8
        # Little endian: the most significant byte comes first in the concatenation.
        return expr.concat_bytes(*(self.read8(offset + i) for i in reversed(range(count))))

    def write(self, offset: int, value: data.Expression) -> None:
        if value.width == data.BOOL:
            self.write8(offset, expr.zext(value, data.INT8))
            return
        for i in range(value.width // 8):
            self.write8(offset + i, expr.extract(value, 8 * i, data.INT8))

    def concrete_bytes(self) -> bytes | None:
        if all(byte.is_constant for byte in self._bytes):
            return bytes(byte.value for byte in self._bytes)
        return None


class AddressSpace:
    """Binding of memory objects to their state, shared copy-on-write between siblings."""

    _cow_keys = itertools.count(1)

    def __init__(self):
        self.cow_key = next(AddressSpace._cow_keys)
        self._objects: dict[MemoryObject, ObjectState] = {}

    def copy(self) -> 'AddressSpace':
        # Neither side owns the shared states anymore, so both take a fresh key.
        clone = AddressSpace()
        clone._objects = dict(self._objects)
        self.cow_key = next(AddressSpace._cow_keys)
        return clone

    def bind_object(self, memory_object: MemoryObject, object_state: ObjectState) -> None:
        if object_state.copy_on_write_owner not in (0, self.cow_key):
            raise InvariantViolation(f'MO{memory_object.id} is shared with another address space')
        object_state.copy_on_write_owner = self.cow_key
        self._objects[memory_object] = object_state

    def unbind_object(self, memory_object: MemoryObject) -> None:
        self._objects.pop(memory_object, None)

    def find_object(self, memory_object: MemoryObject) -> ObjectState | None:
        return self._objects.get(memory_object)

    def resolve_one(self, address: int) -> tuple[MemoryObject, ObjectState] | None:
        for memory_object, object_state in self.objects():
            if memory_object.contains(address):
                return memory_object, object_state
        return None

    def get_writeable(self, memory_object: MemoryObject, object_state: ObjectState) -> ObjectState:
        if object_state.read_only:
            raise InvariantViolation(f'write to read-only object MO{memory_object.id}')
        if object_state.copy_on_write_owner == self.cow_key:
            return object_state
        writeable = object_state.copy()
        self.bind_object(memory_object, writeable)
        return writeable

    def objects(self) -> Iterator[tuple[MemoryObject, ObjectState]]:
        return iter(sorted(self._objects.items(), key=lambda item: item[0].id))

    def __len__(self) -> int:
        return len(self._objects)

    def __str__(self) -> str:
        return '{' + ', '.join(f'MO{mo.id}:{id(os):#x}' for mo, os in self.objects()) + '}'
