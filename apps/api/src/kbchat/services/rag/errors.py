class ExtractionError(RuntimeError):
    pass


class DimensionMismatchError(ValueError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"embedding dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class StoreIOError(RuntimeError):
    pass


class RequestTimeoutError(TimeoutError):
    pass


class RetrievalError(RuntimeError):
    pass
