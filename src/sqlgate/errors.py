from __future__ import annotations


class GatewayError(RuntimeError):
    kind = "GatewayError"


class ValidationError(GatewayError):
    kind = "ValidationError"


class NoServerConfiguredError(GatewayError):
    kind = "NoServerConfigured"

    def __init__(self, message: str = "no SQL Server configured; add one first") -> None:
        super().__init__(message)


class IndexOutOfRangeError(GatewayError):
    kind = "IndexOutOfRange"

    def __init__(self, index: object, length: int) -> None:
        super().__init__(f"invalid server index {index!r} (registry has {length} entries)")
        self.index = index
        self.length = length


class ConnectivityError(GatewayError):
    kind = "ConnectivityError"


class QueryExecutionError(GatewayError):
    kind = "ExecutionError"


class DatabaseNotFoundError(GatewayError):
    kind = "DatabaseNotFound"

    def __init__(self, database: str, server: str) -> None:
        super().__init__(f"database '{database}' does not exist on {server}")
        self.database = database
        self.server = server


class InvalidCredentialsError(GatewayError):
    kind = "InvalidCredentials"


class PersistenceError(GatewayError):
    kind = "PersistenceError"
