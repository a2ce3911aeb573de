"""Pydantic schemas for promptlang.

Unit metadata is validated here at load time, and chain results and
session snapshots are serialized through these models.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .ast import Template
from .errors import InvalidMetadata
from .types import ChainOutcome, ChainState


class Metadata(BaseModel):
    """Resolved key/value configuration of one unit."""
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    description: str = ""
    direction: Template
    eager: bool = False
    history: bool = True

    @field_validator("eager", "history", mode="before")
    @classmethod
    def coerce_bool(cls, v: Any) -> bool:
        """Only the literal tokens `true` and `false` are booleans."""
        if isinstance(v, bool):
            return v
        if isinstance(v, str) and v.strip() in ("true", "false"):
            return v.strip() == "true"
        raise ValueError(f"expected 'true' or 'false', got {v!r}")

    @classmethod
    def from_raw(cls, unit: str, raw: Dict[str, Any]) -> "Metadata":
        data: Dict[str, Any] = {key: value.text for key, value in raw.items()}
        if "direction" not in data:
            raise InvalidMetadata(f"Unit '{unit}' has no direction")
        data["direction"] = raw["direction"].template
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise InvalidMetadata(f"Unit '{unit}' has invalid metadata: {problems}") from e


class Turn(BaseModel):
    direction: str
    answer: str
    unit: Optional[str] = None


class SessionState(BaseModel):
    """Serializable snapshot of one chain's session."""
    turns: List[Turn] = Field(default_factory=list)
    bindings: Dict[str, str] = Field(default_factory=dict)


class ChainReport(BaseModel):
    """Terminal report of one chain."""
    unit: str
    outcome: ChainOutcome
    trail: List[str] = Field(default_factory=list)
    answer: Optional[str] = None
    bindings: Dict[str, str] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)
    outputs: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    states: List[ChainState] = Field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def exit_code(self) -> int:
        return self.outcome.exit_code

    @property
    def ok(self) -> bool:
        return self.outcome == ChainOutcome.Success
