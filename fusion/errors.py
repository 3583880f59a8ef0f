"""Exceptions raised above the provider layer."""


class FusionError(Exception):
    """Base class for request-level failures."""


class MissingCredentialError(FusionError):
    """Raised when a mode that cannot degrade has no secret for its provider."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Missing API key for provider: {provider}")


class PersistenceError(FusionError):
    """Raised when a run cannot be written to the store."""


class UnauthenticatedSaveError(PersistenceError):
    """Raised when a run must be saved but the caller is not authenticated."""

    def __init__(self) -> None:
        super().__init__("User authentication required to save conversation")


class FactCheckError(FusionError):
    """Raised inside the fact-check pipeline; never escapes it."""
