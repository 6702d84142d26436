"""Exceptions raised by the store engine and its collaborators."""


class StoreError(Exception):
    """Base class for store engine errors."""


class IdentityError(StoreError):
    """The identity service rejected a request.

    ``str(err)`` is the service's own message, unchanged, so callers can match
    on known texts such as "Invalid login credentials".
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthInProgressError(StoreError):
    """Another sign-in, sign-up, sign-out or reset call has not finished."""


class DuplicateCouponError(StoreError):
    def __init__(self, code: str):
        super().__init__(f"Coupon {code} already exists")
        self.code = code
