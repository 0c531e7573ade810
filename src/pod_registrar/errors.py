"""Error types raised by the registrar and its collaborators."""


class RegistrarError(Exception):
    """Base registrar error."""

    def __init__(self, key: str, message: str, cause: BaseException | None = None):
        super().__init__(f"{key}: {message}")
        self.key = key
        self.cause = cause


class HandleCreationError(RegistrarError):
    """A discovery client handle could not be created for a pod."""

    def __init__(self, key: str, cause: BaseException):
        super().__init__(key, f"unable to create discovery client: {cause}", cause)


class RegistrationError(RegistrarError):
    """The registry rejected or failed a register call."""

    def __init__(self, key: str, cause: BaseException):
        super().__init__(key, f"register failed: {cause}", cause)


class RegistryClientError(Exception):
    """Raised by discovery client implementations."""


class ConfigurationError(Exception):
    """Base configuration error."""


class ValidationError(ConfigurationError):
    """Configuration validation error."""
