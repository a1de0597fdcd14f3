class PredictorError(Exception):
    """Base class for every failure raised by the predictor."""


class ModelLoadError(PredictorError):
    """A model file could not be turned into a Model."""


class FileUnavailableError(ModelLoadError):
    pass


class InvalidModelError(ModelLoadError):
    pass


class _FieldError(InvalidModelError):
    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class MissingFieldError(_FieldError):
    def __init__(self, path: str, expected: str) -> None:
        super().__init__(path, f"missing {expected} member")


class MalformedFieldError(_FieldError):
    pass


class MalformedTreeError(InvalidModelError):
    pass


class ArrayLengthMismatchError(MalformedTreeError):
    pass


class InvalidTreeError(InvalidModelError):
    pass


class CycleDetectedError(InvalidTreeError):
    pass


class GroupMismatchError(InvalidModelError):
    pass


class InvalidBaseScoreError(InvalidModelError):
    pass


class IncompatibleModelSizeError(PredictorError):
    pass
