import dataclasses


@dataclasses.dataclass
class Options:
    debug_log_state_merge: bool = False
    output_locals_on_error: bool = False


DEFAULT_OPTIONS = Options()
