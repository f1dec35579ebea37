# src/generation/models.py — v1
"""Generation request passed to the external gateway on a cache miss."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from analysiscache.cache.models import InputModality


class GenerationRequest(BaseModel):
    """What to generate an analysis for.

    ``input_analysis`` requests carry the user's raw input and modality;
    ``entity_breakdown`` requests carry the catalog entity name.
    """

    kind: Literal["input_analysis", "entity_breakdown"]
    owner_id: str
    modality: InputModality | None = None
    content: str | bytes = ""
    entity_name: str | None = None
    cache_key: str | None = None
