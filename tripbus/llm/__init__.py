# LLM Factory
# Multi-provider LangChain chat models for the chat relay

from tripbus.llm.factory import LLMConfig, create_llm, llm_config_from_env

__all__ = ["LLMConfig", "create_llm", "llm_config_from_env"]
