"""Model adapter: one call to one model, always returning a ModelResult."""

import logging
from collections.abc import Sequence

from config.config_loader import PromptsConfig
from fusion.models import FAILED, INITIAL, SUCCESS, CredentialSet, HistoryMessage, ModelResult
from fusion.providers.base import CallOptions, ProviderError
from fusion.providers.registry import ModelRegistry, UnknownModelError

logger = logging.getLogger(__name__)


class ModelAdapter:
    """Builds the final prompt text and dispatches it through the registry."""

    def __init__(self, registry: ModelRegistry, prompts: PromptsConfig) -> None:
        self.registry = registry
        self._prompts = prompts

    def build_prompt(self, prompt: str, instructions: str | None = None, memory_block: str = "") -> str:
        """Plain-text directive, then project instructions, memory block on top."""
        system = self._prompts.plain_text
        if instructions:
            final = self._prompts.project_wrapper.format(
                instructions=instructions,
                system=system,
                prompt=prompt,
            )
        else:
            final = f"{system}\n\n{prompt}"
        if memory_block:
            final = f"{memory_block}\n\n{final}"
        return final

    def provider_name(self, model_id: str) -> str | None:
        return self.registry.provider_name(model_id)

    async def call(
        self,
        model_id: str,
        prompt: str,
        credentials: CredentialSet,
        *,
        phase: str = INITIAL,
        instructions: str | None = None,
        history: Sequence[HistoryMessage] = (),
        force_json: bool = False,
        options: CallOptions | None = None,
        memory_block: str = "",
    ) -> ModelResult:
        """Call a single model.

        Never raises: a missing credential, an unknown model or any provider
        failure comes back as a result with status "failed".
        """
        options = options or CallOptions()
        if force_json and not options.force_json:
            options = CallOptions(
                temperature=options.temperature,
                force_json=True,
                search_grounding=options.search_grounding,
            )

        try:
            resolved = self.registry.resolve(model_id)
            api_key = credentials.get(resolved.provider_name)
            if not api_key:
                raise ProviderError(resolved.provider_name, f"Missing API key for model: {model_id}")
            reply = await resolved.provider.generate(
                self.build_prompt(prompt, instructions, memory_block),
                api_key=api_key,
                model=resolved.model,
                history=history,
                options=options,
            )
        except (ProviderError, UnknownModelError) as exc:
            logger.warning("Model %s failed in %s: %s", model_id, phase, exc)
            return ModelResult(model=model_id, phase=phase, content="", status=FAILED, error=str(exc))
        except Exception as exc:
            logger.warning("Model %s unexpected failure in %s: %s", model_id, phase, exc)
            return ModelResult(
                model=model_id,
                phase=phase,
                content="",
                status=FAILED,
                error=f"Unexpected error: {exc}",
            )

        return ModelResult(
            model=model_id,
            phase=phase,
            content=reply.content,
            status=SUCCESS,
            tokens=reply.tokens or 0,
        )
