"""
Errors raised by the result pipeline.

Every stage raises one of these and never suppresses them; the view layer turns
them into a JSON error body with the matching HTTP status.
"""


class ResultsError(Exception):
    """Base error for result generation and marks entry."""
    status_code = 400
    error_type = 'results_error'

    def __init__(self, message, **context):
        self.message = message
        # Identifiers (student_id, component_id, subject_id, term_id...) of the offending record
        self.context = {key: value for key, value in context.items() if value is not None}
        super().__init__(self.message)

    def to_dict(self):
        return {
            'error': self.message,
            'type': self.error_type,
            'context': self.context,
        }


class NotFoundError(ResultsError):
    """A class, subject, exam, term or scheme reference does not exist."""
    status_code = 404
    error_type = 'not_found'


class ValidationError(ResultsError):
    """Marks or request parameters are malformed or out of range."""
    status_code = 400
    error_type = 'validation_error'


class ConfigurationError(ResultsError):
    """Grading scale or weightage setup that must be fixed by an administrator."""
    status_code = 422
    error_type = 'configuration_error'


class LockedStateError(ResultsError):
    """Marks were submitted for a locked component or exam."""
    status_code = 409
    error_type = 'locked'


class ForbiddenError(ResultsError):
    """The user may not enter marks or change locks for this class and subject."""
    status_code = 403
    error_type = 'forbidden'
