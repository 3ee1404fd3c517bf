class ExamError(Exception):
    """Base class for errors raised by the exam engine."""
    pass

class NotFound(ExamError):
    """Unknown test, result or session."""
    pass

class DataIntegrityError(ExamError):
    """Section/question numbering of a stored test is inconsistent."""
    pass

class InvalidInput(ExamError):
    """Malformed answer map, option label or session action."""
    pass

class ConcurrencyConflict(ExamError):
    """A per-user analytics write lost a race against another submission."""
    pass

class SessionClosed(ExamError):
    """The exam session was already submitted or has expired."""
    pass
