"""Generator collaborator contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional


ProgressCallback = Callable[[int, int], Awaitable[None]]


class GeneratorUnavailableError(RuntimeError):
    """Raised when no generator backend is configured."""


class GenerationCanceledError(RuntimeError):
    """Raised by a generator that observed its cancellation token."""


class CancellationToken:
    """Cooperative cancellation signal handed to a generator call.

    ``check`` is an async callable returning True once the owning job (or its
    batch) has been canceled. Generators poll it between expensive steps.
    """

    def __init__(self, check: Optional[Callable[[], Awaitable[bool]]] = None):
        self._check = check
        self._canceled = False

    def cancel(self) -> None:
        self._canceled = True

    async def is_canceled(self) -> bool:
        if self._canceled:
            return True
        if self._check is not None and await self._check():
            self._canceled = True
        return self._canceled

    async def raise_if_canceled(self) -> None:
        if await self.is_canceled():
            raise GenerationCanceledError("Generation canceled")


@dataclass(frozen=True)
class GenerationRequest:
    job_id: str
    team_id: str
    variant_id: str
    job_type: str
    prompts: List[str]
    input: Dict[str, Any] = field(default_factory=dict)

    @property
    def expected_images(self) -> int:
        return max(len(self.prompts), 1)


@dataclass(frozen=True)
class GenerationOutput:
    image_urls: List[str]
    provider: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def image_count(self) -> int:
        return len(self.image_urls)
