from __future__ import annotations


class PoolError(Exception):
    status_code: int = 500
    error_type: str = "server_error"
    message: str = "Internal server error"

    def __init__(self, message: str | None = None, param: str | None = None, code: str | None = None):
        self.message = message or self.message
        self.param = param
        self.code = code
        super().__init__(self.message)


class AuthenticationError(PoolError):
    status_code = 401
    error_type = "authentication_error"
    message = "Invalid master key"


class NotFoundError(PoolError):
    status_code = 404
    error_type = "not_found"
    message = "Resource not found"


class RejectedError(PoolError):
    status_code = 400
    error_type = "rejected"
    message = "Request rejected"


class NoDomainAvailableError(PoolError):
    status_code = 503
    error_type = "no_domain_available"
    message = "No domain available"


class StoreConflictError(PoolError):
    status_code = 503
    error_type = "store_conflict"
    message = "Concurrent update conflict, please retry"


class StoreCorruptedError(PoolError):
    status_code = 500
    error_type = "store_corrupted"
    message = "Persisted store data is unreadable"
