class DataAccessError(Exception):
    """Base class for failures of the table data-access contract."""

    status_code = 500
    kind = "data_access_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DataAccessError):
    """A payload is missing required fields or carries fields the entity does not have."""

    status_code = 422
    kind = "validation_error"


class NotFoundError(DataAccessError):
    status_code = 404
    kind = "not_found"


class ConstraintError(DataAccessError):
    """A foreign key does not resolve, or dependent rows block a delete."""

    status_code = 409
    kind = "constraint_error"


class RemoteOperationError(DataAccessError):
    """The database or the identity provider rejected the call."""

    status_code = 502
    kind = "remote_operation_error"


class AuthenticationError(RemoteOperationError):
    status_code = 401
    kind = "authentication_error"
