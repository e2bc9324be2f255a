"""Generation backend contract and adapters."""

from chatkeep.generation.backend import GenerationBackend, GenerationError, LiteLLMBackend

__all__ = ["GenerationBackend", "GenerationError", "LiteLLMBackend"]
