import re

from .errors import UnknownRevisionError

_SYM_ARG = re.compile(r'arg\d\d')
_SYM_OUT = re.compile(r'out!.*\d')


def is_sym_arg(name: str) -> bool:
    return _SYM_ARG.fullmatch(name) is not None


def is_sym_out(name: str) -> bool:
    return _SYM_OUT.fullmatch(name) is not None


def quoted(value: str) -> str:
    return '"' + value.replace('\\', '\\\\').replace('"', '\\"') + '"'


def hex_escaped(value: bytes) -> str:
    return ''.join(f'\\x{byte:02x}' for byte in value)


def _c_string(value: bytes | str) -> str:
    if isinstance(value, str):
        return value
    return value.split(b'\0', 1)[0].decode('latin-1')


class Differentiator:
    """Divergence between two revisions on one concrete input.

    Renders as ``{("arg" ...) {:name {revA \\x.. revB \\x..} ...}}``.
    """

    def __init__(self, rev_a: int, rev_b: int):
        self.rev_a = rev_a
        self.rev_b = rev_b
        self.args: dict[int, bytes | str] = {}
        self.outputs: dict[str, tuple[bytes, bytes]] = {}
        self.stdouts: dict[int, bytes] = {}

    def _check_revision(self, revision: int) -> None:
        if revision not in (self.rev_a, self.rev_b):
            raise UnknownRevisionError(revision, (self.rev_a, self.rev_b))

    def add_argument(self, index: int, value: bytes | str) -> None:
        self.args[index] = value

    def add_output(self, name: str, revision: int, value: bytes) -> None:
        self._check_revision(revision)
        output_a, output_b = self.outputs.get(name, (b'', b''))
        if revision == self.rev_a:
            output_a = value
        else:
            output_b = value
        self.outputs[name] = (output_a, output_b)

    def add_stdout(self, revision: int, value: bytes) -> None:
        self._check_revision(revision)
        self.stdouts[revision] = value

    def __str__(self) -> str:
        args = ' '.join(quoted(_c_string(self.args[index])) for index in sorted(self.args))
        outputs = ' '.join(
            f':{name} {{{self.rev_a} {hex_escaped(output_a)} {self.rev_b} {hex_escaped(output_b)}}}'
            for name, (output_a, output_b) in self.outputs.items()
        )
        return f'{{({args}) {{{outputs}}}}}'
