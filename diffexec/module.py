import dataclasses


@dataclasses.dataclass(frozen=True, order=True)
class KInstruction:
    id: int
    function: str = dataclasses.field(default='', compare=False)
    file: str = dataclasses.field(default='', compare=False)
    line: int = dataclasses.field(default=0, compare=False)
    assembly_line: int = dataclasses.field(default=0, compare=False)


@dataclasses.dataclass(eq=False)
class KFunction:
    name: str
    num_registers: int
    instructions: list[KInstruction]
    arg_registers: list[int] = dataclasses.field(default_factory=list)
    arg_names: list[str | None] = dataclasses.field(default_factory=list)

    def get_arg_register(self, index: int) -> int:
        return self.arg_registers[index]
