from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic_ai.models import Model, infer_model
from pydantic_ai.settings import ModelSettings

from forgechat.config import Config


class ModelInitParams(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    provider: str
    model_name: str
    api_key: str | None = None


def init_model(params: ModelInitParams) -> Model:
    """Build a provider model from explicit credentials instead of ambient globals."""
    if params.provider == "test":
        from pydantic_ai.models.test import TestModel

        return TestModel()

    if params.provider == "anthropic":
        from pydantic_ai.models.anthropic import AnthropicModel
        from pydantic_ai.providers.anthropic import AnthropicProvider

        return AnthropicModel(params.model_name, provider=AnthropicProvider(api_key=params.api_key))

    if params.provider == "openai":
        from pydantic_ai.models.openai import OpenAIChatModel
        from pydantic_ai.providers.openai import OpenAIProvider

        return OpenAIChatModel(params.model_name, provider=OpenAIProvider(api_key=params.api_key))

    return infer_model(f"{params.provider}:{params.model_name}")


def model_params_from_config(config: Config) -> ModelInitParams:
    return ModelInitParams(
        provider=config.model_provider,
        model_name=config.model_name,
        api_key=config.model_api_key,
    )


def model_settings_from_config(config: Config) -> ModelSettings:
    return ModelSettings(max_tokens=config.model_max_tokens, temperature=config.model_temperature)
