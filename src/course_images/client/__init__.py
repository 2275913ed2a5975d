"""
客户端封装
"""
from .wrapper import (
    CoverGenerationClient,
    GenerationOutcome,
    GenerationRequestError,
    GenerationTimeout,
)

__all__ = [
    "CoverGenerationClient",
    "GenerationOutcome",
    "GenerationRequestError",
    "GenerationTimeout",
]
