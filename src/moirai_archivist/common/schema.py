"""Pydantic models for fragment request/response types."""
from __future__ import annotations
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

RANDOM_GENRE = "Random"


class CausalForce(str, Enum):
    """The hidden axiom a fragment is built around."""
    FATE = "FATE"
    CHOICE = "CHOICE"
    CHANCE = "CHANCE"


class GenerationRequest(BaseModel):
    """One fragment request. Serialises to the service's wire body."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    difficulty_tier: int = Field(alias="difficultyTier", ge=1, strict=True)
    secret_tag: CausalForce = Field(alias="secretTag")
    genre: str = RANDOM_GENRE

    @field_validator("secret_tag", mode="before")
    @classmethod
    def _normalise_tag(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("genre", mode="before")
    @classmethod
    def _default_genre(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return RANDOM_GENRE
        return value

    def to_wire(self) -> dict[str, Any]:
        return {
            "secretTag": self.secret_tag.value,
            "difficultyTier": self.difficulty_tier,
            "genre": self.genre,
        }


class GenerationResult(BaseModel):
    """A validated fragment. Both texts are always non-empty."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    fragment_text: str = Field(alias="fragmentText", min_length=1)
    revelation_text: str = Field(alias="revelationText", min_length=1)

    def to_wire(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)


# Sent to the provider as the structured-output constraint
FRAGMENT_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "fragmentText": {
            "type": "string",
            "description": "A short, engaging story fragment about 100-150 words long.",
        },
        "revelationText": {
            "type": "string",
            "description": (
                "The explanation (1-2 sentences) of why the Causal Force is the "
                "SECRET_TAG, justified by the fragment."
            ),
        },
    },
    "required": ["fragmentText", "revelationText"],
}
