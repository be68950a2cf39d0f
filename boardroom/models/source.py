"""Research source data model."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class SearchResult:
    """One hit returned by the research backend."""

    title: str
    url: str = ""
    snippet: str = ""
    date: str | None = None
    last_updated: str | None = None

    def format(self) -> str:
        """Render as ``[title] url (date) [Updated: ...]`` followed by the snippet."""
        header = f"[{self.title or 'Untitled'}]"
        if self.url:
            header += f" {self.url}"
        if self.date:
            header += f" ({self.date})"
        if self.last_updated:
            header += f" [Updated: {self.last_updated}]"
        return f"{header}\n{self.snippet}".strip()

    @classmethod
    def from_dict(cls, data: dict) -> SearchResult:
        return cls(
            title=data.get("title") or "Untitled",
            url=data.get("url") or "",
            snippet=data.get("snippet") or "",
            date=data.get("date"),
            last_updated=data.get("last_updated"),
        )
