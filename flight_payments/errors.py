"""Error taxonomy for the payment orchestrator.

Errors are raised inside the engine and turned into result values at the
orchestrator boundary; ``code`` is what the HTTP layer maps to a status.
"""


class PaymentError(Exception):
    code = "PaymentError"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(PaymentError):
    code = "ValidationError"


class NotFoundError(PaymentError):
    code = "NotFoundError"


class StateError(PaymentError):
    code = "StateError"


class InsufficientPointsError(PaymentError):
    code = "InsufficientPointsError"

    def __init__(self, required: int, available: int, program: str):
        self.required = required
        self.available = available
        self.program = program
        super().__init__(
            f"Insufficient points: required {required}, available {available} ({program})"
        )


class ProviderError(PaymentError):
    code = "ProviderError"

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class UnknownError(PaymentError):
    code = "UnknownError"


HTTP_STATUS_BY_CODE = {
    ValidationError.code: 400,
    StateError.code: 400,
    InsufficientPointsError.code: 400,
    ProviderError.code: 400,
    NotFoundError.code: 404,
    UnknownError.code: 500,
}
