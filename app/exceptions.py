class AppError(Exception):
    def __init__(self, message: str, code: str = "INTERNAL_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(AppError):
    def __init__(self, resource: str, resource_id: str):
        super().__init__(f"{resource} '{resource_id}' not found", code="NOT_FOUND")


class DataUnavailableError(NotFoundError):
    def __init__(self, symbol: str):
        AppError.__init__(
            self, f"Market data for '{symbol}' is unavailable", code="DATA_UNAVAILABLE"
        )
        self.symbol = symbol


class ValidationError(AppError):
    def __init__(self, message: str):
        super().__init__(message, code="VALIDATION_ERROR")


class ProviderError(AppError):
    def __init__(self, message: str):
        super().__init__(message, code="PROVIDER_ERROR")
