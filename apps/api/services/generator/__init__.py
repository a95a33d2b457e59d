"""Public generator utilities."""

from services.generator.providers import (
    BaseGenerator,
    OpenAIImageGenerator,
    UnconfiguredGenerator,
    get_generator,
)
from services.generator.types import (
    CancellationToken,
    GenerationCanceledError,
    GenerationOutput,
    GenerationRequest,
    GeneratorUnavailableError,
    ProgressCallback,
)

__all__ = [
    "BaseGenerator",
    "CancellationToken",
    "GenerationCanceledError",
    "GenerationOutput",
    "GenerationRequest",
    "GeneratorUnavailableError",
    "OpenAIImageGenerator",
    "ProgressCallback",
    "UnconfiguredGenerator",
    "get_generator",
]
