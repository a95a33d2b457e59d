"""Typed generation job payloads, discriminated by job type."""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from services.errors import ValidationError


class ImageGenerationPayload(BaseModel):
    type: Literal["generation"] = "generation"
    number_of_variations: int = Field(default=1, ge=1, le=10)
    product_image_file_ids: List[str] = Field(min_length=1, max_length=4)
    prompts: List[str] = Field(default_factory=list)
    custom_instructions: List[str] = Field(default_factory=list)
    model_image_file_id: Optional[str] = None
    background_image_file_id: Optional[str] = None
    moodboard_id: Optional[str] = None
    purpose: Optional[str] = None

    @property
    def credit_cost(self) -> int:
        return self.number_of_variations


class ImageEditPayload(BaseModel):
    type: Literal["edit"] = "edit"
    base_image_file_id: str = Field(min_length=1)
    instruction: str = Field(min_length=1, max_length=4000)
    reference_image_file_ids: List[str] = Field(default_factory=list, max_length=4)

    @property
    def number_of_variations(self) -> int:
        return 1

    @property
    def credit_cost(self) -> int:
        return 1


JobPayload = Annotated[Union[ImageGenerationPayload, ImageEditPayload], Field(discriminator="type")]

_payload_adapter = TypeAdapter(JobPayload)


def parse_job_payload(raw: Dict[str, Any]) -> Union[ImageGenerationPayload, ImageEditPayload]:
    """Validate a stored or submitted payload into its typed form."""
    try:
        return _payload_adapter.validate_python(raw or {})
    except PydanticValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", "Invalid payload")
        raise ValidationError(f"Invalid job payload: {location} {message}".strip()) from exc


def build_prompts(payload: ImageGenerationPayload) -> List[str]:
    """One prompt per variation, falling back to per-variation custom instructions."""
    prompts: List[str] = []
    for idx in range(payload.number_of_variations):
        if idx < len(payload.prompts) and payload.prompts[idx].strip():
            base = payload.prompts[idx].strip()
        else:
            base = "Studio catalog photo of the product"
            if idx < len(payload.custom_instructions) and payload.custom_instructions[idx].strip():
                base = f"{base}. {payload.custom_instructions[idx].strip()}"
        prompts.append(base)
    return prompts
