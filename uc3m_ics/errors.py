from __future__ import annotations


class TimetableError(Exception):
    """Base class for every failure of the timetable pipeline."""


class ParseError(TimetableError):
    pass


class MalformedTableError(ParseError):
    pass


class UnknownTimeFormatError(ParseError):
    pass


class MissingDateRangeError(ParseError):
    pass


class ValidationError(TimetableError):
    def __init__(self, message: str, conflicts=None):
        super().__init__(message)
        self.conflicts = list(conflicts or [])


class EncodeError(TimetableError):
    pass


class InvalidFieldError(EncodeError):
    def __init__(self, field: str, uid: str = ""):
        where = f" of event {uid}" if uid else ""
        super().__init__(f"required field `{field}`{where} is empty")
        self.field = field


class RetrievalError(TimetableError):
    pass


class TimetableUrlError(ValueError):
    pass
