class BookstoreError(Exception):
    """Caller-correctable failure raised by the service layer."""

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(BookstoreError):
    status_code = 400


class Unauthorized(BookstoreError):
    status_code = 401


class Forbidden(BookstoreError):
    status_code = 403


class NotFound(BookstoreError):
    status_code = 404


class Conflict(BookstoreError):
    status_code = 409
