# Error taxonomy shared by the components and the HTTP layer


class ApiError(Exception):
    """Base class for errors that are safe to show to the client."""
    status_code = 500
    message = 'Internal Server Error'

    def __init__(self, message=None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    @property
    def tag(self):
        return type(self).__name__

    def to_dict(self):
        return {"error": self.tag, "message": self.message}


class ValidationFailure(ApiError):
    status_code = 400
    message = 'Invalid input'


class DuplicateEmail(ApiError):
    status_code = 400
    message = 'Email already registered'


class AlreadyVerified(ApiError):
    status_code = 400
    message = 'User already verified'


class InvalidOrExpiredCode(ApiError):
    status_code = 400
    message = 'Invalid or expired OTP'


class InvalidOrExpiredToken(ApiError):
    status_code = 400
    message = 'Token invalid or expired'


class InvalidCredentials(ApiError):
    status_code = 401
    message = 'Invalid email or password'


class NotVerified(ApiError):
    status_code = 401
    message = 'Email not verified yet'


class Unauthorized(ApiError):
    status_code = 401
    message = 'Unauthorized'


class Forbidden(ApiError):
    status_code = 403
    message = 'Not allowed'


class NotFound(ApiError):
    status_code = 404
    message = 'Not found'


class DeliveryFailure(ApiError):
    status_code = 500
    message = 'Failed to send email'


class StorageUnavailable(ApiError):
    status_code = 500
    message = 'Storage unavailable, please try again'
