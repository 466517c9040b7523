import dataclasses
import logging

from .errors import TooManyObjectsError

logger = logging.getLogger(__name__)

MAX_OBJECTS = 64
STDOUT_SIZE = 1024


@dataclasses.dataclass
class KTestObject:
    name: str
    data: bytes


@dataclasses.dataclass
class KTest:
    args: list[str] = dataclasses.field(default_factory=list)
    sym_argvs: int = 0
    sym_argv_len: int = 0
    objects: list[KTestObject] = dataclasses.field(default_factory=list)

    def push_object(self, name: str, value: bytes) -> None:
        if len(self.objects) >= MAX_OBJECTS:
            raise TooManyObjectsError(MAX_OBJECTS)
        self.objects.append(KTestObject(name=name, data=bytes(value)))

    def find(self, name: str) -> KTestObject | None:
        return next((obj for obj in self.objects if obj.name == name), None)


class KTestBuilder:
    """Reconstructs a test record from a concrete input so it can be replayed."""

    def __init__(self, program: str):
        self.ktest = KTest(args=[program])
        self._total_args = 0
        self._stdin: bytes | None = None
        self._stdout: bytes | None = None
        self._files: list[bytes] = []

    def add_sym_arg(self, value: str | bytes) -> None:
        raw = value.encode() if isinstance(value, str) else value
        name = f'arg{self._total_args:02d}'
        self._total_args += 1
        self.ktest.push_object(name, raw + b'\0')
        self.ktest.args.extend(['-sym-arg', str(len(raw))])
        logger.debug('argument %s: %d bytes', name, len(raw) + 1)

    def add_sym_args(self, values: list[str | bytes]) -> None:
        for value in values:
            self.add_sym_arg(value)

    def add_second_order_var(self, name: str, nbytes: int, value: int) -> None:
        self.ktest.push_object(name, (value & ((1 << 8 * nbytes) - 1)).to_bytes(nbytes, 'little'))

    def add_sym_file(self, content: bytes) -> None:
        self._files.append(content)

    def add_sym_stdin(self, content: bytes) -> None:
        if self._stdin is not None:
            raise ValueError('stdin content given twice')
        self._stdin = content

    def add_sym_stdout(self, content: bytes) -> None:
        if self._stdout is not None:
            raise ValueError('stdout content given twice')
        self._stdout = content

    def _push_files(self) -> None:
        max_size = max(map(len, self._files))
        for i, content in enumerate(self._files):
            # Shorter files are zero padded to the largest one.
            self.ktest.push_object(f'{chr(ord("A") + i)}-data', content.ljust(max_size, b'\0'))
        self.ktest.args.extend(['-sym-files', str(len(self._files)), str(max_size)])

    def build(self) -> KTest:
        if self._files:
            self._push_files()
        if self._stdin is not None:
            self.ktest.push_object('stdin', self._stdin)
            self.ktest.args.extend(['-sym-stdin', str(len(self._stdin))])
        if self._stdout is not None:
            self.ktest.push_object('stdout', self._stdout[:STDOUT_SIZE].ljust(STDOUT_SIZE, b'\0'))
            self.ktest.args.append('-sym-stdout')
        self.ktest.push_object('model_version', (1).to_bytes(4, 'little'))
        return self.ktest
