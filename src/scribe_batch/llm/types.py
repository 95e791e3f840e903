"""Shared LLM request structures."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

ROLES = ("user", "assistant")


@dataclass(frozen=True)
class Message:
    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unsupported message role: {self.role!r}")

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class GenerationRequest:
    custom_id: str
    messages: List[Message]
    model: str
    max_tokens: int = 0
    temperature: float = 1.0
    system: str = ""


@dataclass(frozen=True)
class EnrichedRequest:
    """A request ready for submission; built once by the enricher."""

    custom_id: str
    messages: Tuple[Message, ...]
    model: str
    max_tokens: int
    temperature: float
    system: str
    content_type: str = "default"

    def to_params(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system": self.system,
            "messages": [message.to_dict() for message in self.messages],
        }

    def to_batch_entry(self) -> Dict[str, Any]:
        return {"custom_id": self.custom_id, "params": self.to_params()}


@dataclass
class JobMetadata:
    project_title: str
    citation_style: str = "APA"
    project_type: str = "academic"
