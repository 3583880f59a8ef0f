"""Abstract base for all inference providers."""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass

from fusion.models import HistoryMessage


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


@dataclass(frozen=True)
class CallOptions:
    temperature: float | None = None
    force_json: bool = False
    search_grounding: bool = False


@dataclass(frozen=True)
class ProviderReply:
    content: str
    tokens: int = 0


class AIProvider(ABC):
    """Abstract base for all inference providers.

    A provider is built once per process and is stateless across calls: the
    secret arrives with every call because credentials are resolved per request.
    """

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'google', 'anthropic')."""
        ...

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        api_key: str,
        model: str,
        history: Sequence[HistoryMessage] = (),
        options: CallOptions = CallOptions(),
    ) -> ProviderReply:
        """Generate a response for the given prompt.

        Args:
            prompt: The full prompt text to send as the final user turn.
            api_key: Provider secret for this request.
            model: Concrete provider model string.
            history: Earlier conversation turns, oldest first.
            options: Sampling and tool switches.

        Returns:
            ProviderReply with text content and total token usage (0 if unreported).

        Raises:
            ProviderError: On API failure, timeout, or empty response.
        """
        ...

    async def generate_image(self, prompt: str, *, api_key: str) -> str:
        """Generate one image and return it as a URL or data URL.

        Raises:
            ProviderError: When the provider has no image model or the call fails.
        """
        raise ProviderError(self.name(), "Image generation not supported")
