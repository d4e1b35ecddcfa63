"""
LLM Factory for Multi-Provider Support

Builds the LangChain chat model behind the chat relay from a model
identifier. Supports OpenAI, Azure OpenAI, Anthropic, Google Gemini and
Ollama; provider packages are imported only when selected.

Model identifiers:
- OpenAI: "gpt-4o-mini", "gpt-4o"
- Azure OpenAI: "azure/<deployment>"
- Anthropic: "claude-sonnet-4-5-20250929"
- Google Gemini: "gemini/gemini-2.0-flash"
- Ollama: "ollama/llama3.2"
"""

import logging
import os
from typing import Any, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

INSTALL_HINT = (
    "Install the provider package:\n"
    "  - OpenAI / Azure OpenAI: pip install langchain-openai\n"
    "  - Anthropic: pip install 'tripbus[anthropic]'\n"
    "  - Google Gemini: pip install 'tripbus[gemini]'\n"
    "  - Ollama: pip install 'tripbus[ollama]'"
)


class LLMConfig(BaseModel):
    """Configuration for LLM initialization."""

    model: str = Field(
        default="gpt-4o-mini",
        description="Model identifier (e.g., 'gpt-4o-mini', 'azure/gpt-4o', 'ollama/llama3.2')",
    )
    temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for model responses",
    )
    max_tokens: Optional[int] = Field(
        default=None,
        description="Maximum tokens to generate in response",
    )
    timeout: Optional[float] = Field(
        default=30.0,
        description="Request timeout in seconds",
    )
    max_retries: int = Field(
        default=2,
        description="Maximum number of retries on API errors",
    )

    @property
    def provider(self) -> str:
        if self.model.startswith("azure/"):
            return "azure"
        if self.model.startswith("ollama/"):
            return "ollama"
        if self.model.startswith("gemini/"):
            return "gemini"
        if self.model.startswith("claude"):
            return "anthropic"
        return "openai"

    @property
    def model_name(self) -> str:
        """Model identifier without the provider prefix."""
        prefix, sep, rest = self.model.partition("/")
        return rest if sep and prefix in ("azure", "ollama", "gemini") else self.model


def _require_env(name: str, provider: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ValueError(f"{provider} requires {name} environment variable")
    return value


def create_llm(config: LLMConfig | None = None, **kwargs: Any) -> Any:
    """
    Create a LangChain chat model for the configured provider.

    Args:
        config: Model settings (defaults to LLMConfig())
        **kwargs: Additional provider-specific parameters

    Returns:
        Chat model instance (ChatOpenAI, AzureChatOpenAI, ChatAnthropic, ...)

    Raises:
        ImportError: If the provider package is not installed
        ValueError: If required credentials are missing
    """
    config = config or LLMConfig()
    provider = config.provider

    try:
        if provider == "azure":
            from langchain_openai import AzureChatOpenAI

            endpoint = _require_env("AZURE_OPENAI_ENDPOINT", "Azure OpenAI")
            logger.info(f"Creating Azure OpenAI LLM: {config.model_name} at {endpoint}")
            return AzureChatOpenAI(
                azure_deployment=config.model_name,
                azure_endpoint=endpoint,
                api_key=_require_env("AZURE_OPENAI_API_KEY", "Azure OpenAI"),
                api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                timeout=config.timeout,
                max_retries=config.max_retries,
                **kwargs,
            )

        if provider == "ollama":
            from langchain_ollama import ChatOllama

            logger.info(f"Creating Ollama LLM: {config.model_name}")
            return ChatOllama(
                model=config.model_name,
                temperature=config.temperature,
                num_predict=config.max_tokens,
                **kwargs,
            )

        if provider == "gemini":
            from langchain_google_genai import ChatGoogleGenerativeAI

            logger.info(f"Creating Google Gemini LLM: {config.model_name}")
            return ChatGoogleGenerativeAI(
                model=config.model_name,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                timeout=config.timeout,
                max_retries=config.max_retries,
                google_api_key=_require_env("GOOGLE_API_KEY", "Google Gemini"),
                **kwargs,
            )

        if provider == "anthropic":
            from langchain_anthropic import ChatAnthropic

            logger.info(f"Creating Anthropic LLM: {config.model}")
            return ChatAnthropic(
                model=config.model,
                temperature=config.temperature,
                max_tokens=config.max_tokens or 1024,
                timeout=config.timeout,
                max_retries=config.max_retries,
                anthropic_api_key=_require_env("ANTHROPIC_API_KEY", "Anthropic"),
                **kwargs,
            )

        from langchain_openai import ChatOpenAI

        logger.info(f"Creating OpenAI LLM: {config.model}")
        return ChatOpenAI(
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout,
            max_retries=config.max_retries,
            openai_api_key=_require_env("OPENAI_API_KEY", "OpenAI"),
            **kwargs,
        )

    except ImportError as e:
        logger.error(f"Failed to import LangChain provider for {config.model}: {e}")
        raise ImportError(f"{e}\n\n{INSTALL_HINT}") from e


def llm_config_from_env() -> LLMConfig:
    """
    Read LLM settings from the environment.

    Reads:
    - TRIPBUS_LLM_MODEL: Model identifier (default: "gpt-4o-mini")
    - TRIPBUS_LLM_TEMPERATURE: Temperature (default: 0.2)
    - TRIPBUS_LLM_MAX_TOKENS: Max tokens (optional)
    - TRIPBUS_LLM_TIMEOUT: Timeout in seconds (default: 30.0)
    - TRIPBUS_LLM_MAX_RETRIES: Max retries (default: 2)
    """
    max_tokens = os.getenv("TRIPBUS_LLM_MAX_TOKENS")
    return LLMConfig(
        model=os.getenv("TRIPBUS_LLM_MODEL", "gpt-4o-mini"),
        temperature=float(os.getenv("TRIPBUS_LLM_TEMPERATURE", "0.2")),
        max_tokens=int(max_tokens) if max_tokens else None,
        timeout=float(os.getenv("TRIPBUS_LLM_TIMEOUT", "30.0")),
        max_retries=int(os.getenv("TRIPBUS_LLM_MAX_RETRIES", "2")),
    )
