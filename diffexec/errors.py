class DiffexecError(Exception):
    pass


class InvariantViolation(DiffexecError, AssertionError):
    """Internal consistency failure. Never handled inside the package."""


class UnknownRevisionError(DiffexecError, ValueError):
    def __init__(self, revision: int, known: tuple[int, int]):
        super().__init__(f'revision {revision} is neither {known[0]} nor {known[1]}')
        self.revision = revision
        self.known = known


class TooManyObjectsError(DiffexecError):
    def __init__(self, limit: int):
        super().__init__(f'test record holds at most {limit} objects')
        self.limit = limit
