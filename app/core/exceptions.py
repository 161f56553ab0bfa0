"""Service-layer error carrying the HTTP status the router answers with."""

from fastapi import status


class ServiceError(Exception):
    """
    Business-rule failure raised by the fee, student fee and payment services.

    400: a ledger rule was violated (allocation above payment or balance, amount below paid).
    404: the row does not exist for the caller's school.
    409: a student fee unique key collided.
    """

    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
