"""Text generation through LangChain chat models."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from langchain_core.messages import HumanMessage, SystemMessage

from gamefoundry.models.artifacts import TextArtifact
from gamefoundry.providers.base import BackendResult, Capability, GenerationParams
from gamefoundry.providers.errors import ProviderError, classify_exception

if TYPE_CHECKING:
    from collections.abc import Callable

    from langchain_core.language_models import BaseChatModel

    ChatModelFactory = Callable[[str, float], BaseChatModel]

_JSON_SYSTEM_PROMPT = (
    "Respond with a single JSON document and nothing else. "
    "Do not wrap it in markdown code fences."
)


class LangChainTextBackend:
    """Adapts any LangChain chat model to the text capability.

    Temperature is fixed at model construction in LangChain, so one chat
    model is built (and reused) per ``(model, temperature)`` pair.

    Attributes:
        name: Provider name reported in logs and cost accounting.
        default_model: Model used when params name no other.
    """

    capabilities = frozenset({Capability.TEXT})

    def __init__(
        self,
        provider_name: str,
        default_model: str,
        *,
        chat_model_factory: ChatModelFactory | None = None,
    ) -> None:
        self.name = provider_name
        self.default_model = default_model
        self._factory = chat_model_factory or self._default_factory
        self._models: dict[tuple[str, float], BaseChatModel] = {}

    def _default_factory(self, model: str, temperature: float) -> BaseChatModel:
        from gamefoundry.providers.factory import create_chat_model

        return create_chat_model(self.name, model, temperature=temperature)

    def _get_model(self, model: str, temperature: float) -> BaseChatModel:
        key = (model, temperature)
        if key not in self._models:
            self._models[key] = self._factory(model, temperature)
        return self._models[key]

    async def generate(
        self, capability: Capability, prompt: str, params: GenerationParams
    ) -> BackendResult:
        if capability is not Capability.TEXT:
            raise ProviderError(self.name, f"Unsupported capability: {capability.value}")

        messages: list[Any] = []
        if params.response_format == "json":
            messages.append(SystemMessage(content=_JSON_SYSTEM_PROMPT))
        messages.append(HumanMessage(content=prompt))

        model: Any = self._get_model(params.model, params.temperature)
        if params.max_tokens is not None:
            model = model.bind(max_tokens=params.max_tokens)

        try:
            response = await model.ainvoke(messages)
        except Exception as e:
            raise classify_exception(self.name, e) from e

        content = response.content
        if isinstance(content, list):
            # Some providers return content blocks
            content = "".join(
                block.get("text", "") if isinstance(block, dict) else str(block)
                for block in content
            )

        usage = getattr(response, "usage_metadata", None) or {}
        return BackendResult(
            artifact=TextArtifact(text=str(content)),
            input_tokens=int(usage.get("input_tokens", 0)),
            output_tokens=int(usage.get("output_tokens", 0)),
        )
