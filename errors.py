"""
Error taxonomy for the Smart Study API.

Every error knows the HTTP status it maps to; the handlers in main.py turn
them into the ``{"success": false, "message": ...}`` envelope.
"""


class AppError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None, status_code=None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class InsufficientInputError(ValidationError):
    default_message = "Not enough text to generate questions"


class InvalidPayloadError(ValidationError):
    default_message = "Invalid questions / answers payload"


class AuthError(AppError):
    status_code = 401
    default_message = "Unauthorized"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class UpstreamProviderError(AppError):
    status_code = 500
    default_message = "External provider failed"


class ProviderNotConfiguredError(UpstreamProviderError):
    default_message = "External provider is not configured on server"


class GenerationParseError(UpstreamProviderError):
    default_message = "AI response could not be parsed into questions."


class NoValidQuestionsError(UpstreamProviderError):
    default_message = "AI did not return any valid questions. Please try again."


class UnusableContentError(UpstreamProviderError):
    # provider answered, but with nothing we can work with
    status_code = 400
    default_message = "Not enough usable content was extracted"


class PersistenceError(AppError):
    status_code = 500
    default_message = "Database error"


class DuplicateEmailError(PersistenceError):
    status_code = 400
    default_message = "Email already registered"


class InternalError(AppError):
    status_code = 500
