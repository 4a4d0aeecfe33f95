"""Passage value type and its mapping from search-backend documents."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from langchain_core.documents import Document


@dataclass(frozen=True)
class Passage:
    text: str
    metadata: dict[str, Any] = field(default_factory=dict, hash=False)

    @classmethod
    def from_document(cls, doc: Any) -> "Passage":
        """Converts a LangChain Document (or any page_content/metadata object) at the backend boundary."""
        text = getattr(doc, "page_content", None)
        if text is None and isinstance(doc, str):
            text = doc
        metadata = getattr(doc, "metadata", None) or {}
        return cls(text=str(text or ""), metadata=dict(metadata))

    def with_text(self, text: str) -> "Passage":
        return replace(self, text=text)

    def detached(self) -> "Passage":
        """Copy with its own metadata dict, so callers can edit it without touching cached passages."""
        return replace(self, metadata=dict(self.metadata))

    def to_document(self) -> Document:
        return Document(page_content=self.text, metadata=dict(self.metadata))

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "metadata": dict(self.metadata)}


def join_passage_texts(passages: list[Passage], separator: str = "\n\n") -> str:
    return separator.join(p.text for p in passages)
