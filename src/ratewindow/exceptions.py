"""Counter store specific exceptions."""


class RateWindowError(Exception):
    """Base exception for counter store errors."""

    def __init__(
        self, message: str, key: str | None = None, operation: str | None = None
    ) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            key: Optional namespaced key the operation was working on
            operation: Optional name of the store operation (e.g. "get_and_increment")
        """
        self.key = key
        self.operation = operation
        super().__init__(message)


class StoreNotInitializedError(RateWindowError):
    """Exception raised when a store is used before initialize()."""

    def __init__(self) -> None:
        super().__init__("Counter store was not initialized. Call await initialize() first.")


class StoreUnreachableError(RateWindowError):
    """Exception raised when the backing store cannot be reached."""


class StoreCommandError(RateWindowError):
    """Exception raised when a store command fails for a non-connectivity reason."""


class TransactionConflictError(RateWindowError):
    """Exception raised when a watched key changed before commit.

    Recovered locally by the retry loop; callers only see it wrapped in
    RetryExhaustedError once the attempt budget is spent.
    """


class RetryExhaustedError(RateWindowError):
    """Exception raised when every attempt of an operation hit a conflict."""

    def __init__(self, key: str, operation: str, attempts: int) -> None:
        """Initialize the exception.

        Args:
            key: Namespaced key that kept conflicting
            operation: Name of the store operation
            attempts: Number of attempts made
        """
        self.attempts = attempts
        super().__init__(
            f"{operation} on '{key}' failed: retry limit exceeded after {attempts} attempt(s)",
            key=key,
            operation=operation,
        )


class CannotSetExpirationError(RateWindowError):
    """Exception raised when the expiration repair could not re-arm a key's TTL."""

    def __init__(self, key: str, operation: str | None = None) -> None:
        super().__init__(
            f"Cannot configure timeout on key '{key}': key no longer exists",
            key=key,
            operation=operation,
        )


class MalformedValueError(RateWindowError):
    """Exception raised when a stored counter is not integer-shaped."""

    def __init__(
        self,
        key: str,
        value: object = None,
        operation: str | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            key: Namespaced key holding the bad value
            value: Raw value read back, if any
            operation: Name of the store operation
        """
        self.value = value
        detail = f" (got {value!r})" if value is not None else ""
        super().__init__(
            f"Value stored at '{key}' is not an integer counter{detail}",
            key=key,
            operation=operation,
        )


class ConfigValidationError(RateWindowError):
    """Exception raised when configuration validation fails."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        expected: str | None = None,
        received: str | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            field: Field name that failed validation
            expected: Expected value or type
            received: Received value or type
        """
        self.field = field
        self.expected = expected
        self.received = received

        full_message = message
        if field and expected and received:
            full_message = f"{message} (field='{field}', expected={expected}, received={received})"

        super().__init__(full_message)
