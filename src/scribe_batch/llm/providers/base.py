"""LLM provider interfaces."""

from __future__ import annotations

from typing import Any, Dict, List, Protocol


class CompletionProvider(Protocol):
    name: str

    def create_message(self, params: Dict[str, Any]) -> Dict[str, Any]:
        ...


class BatchProvider(Protocol):
    name: str

    def create_batch(self, entries: List[Dict[str, Any]]) -> Dict[str, Any]:
        ...

    def retrieve_batch(self, batch_id: str) -> Dict[str, Any]:
        ...

    def fetch_results(self, results_url: str) -> str:
        ...
