"""Custom exceptions for docctx."""


class DocctxError(Exception):
    """Base exception for docctx."""
    pass


class ConfigError(DocctxError):
    """Configuration-related errors."""
    pass


class ValidationError(DocctxError):
    """Data validation errors."""
    pass


class MissingCoreContextError(DocctxError):
    """Context was requested before a core fragment was set."""

    def __init__(self, document_type: str = ""):
        message = "No core context has been set; call set_core_context() first"
        if document_type:
            message = f"Cannot build '{document_type}': {message[0].lower()}{message[1:]}"
        super().__init__(message)
        self.document_type = document_type


class DiscoveryIOError(DocctxError):
    """A candidate file could not be read during discovery."""

    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        return f"{self.path}: {self.args[0]}"
