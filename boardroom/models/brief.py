"""Topic context for a synthetic-panel report."""

from __future__ import annotations

from dataclasses import dataclass, field


def split_list(value: str) -> list[str]:
    """Split a comma-separated field into trimmed, non-empty items."""
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class ResearchContext:
    """What the caller wants analysed, and for whom."""

    industry: str = ""
    audience_titles: list[str] = field(default_factory=list)
    competitors: list[str] = field(default_factory=list)
    company_website: str = ""
    seo_keywords: list[str] = field(default_factory=list)
    company_size: list[str] = field(default_factory=list)
    company_revenue: list[str] = field(default_factory=list)
    feedback_type: str = ""
    feedback_item: str = ""

    def cache_fields(self) -> dict[str, object]:
        """Inputs that change the generated report; everything else is ignored."""
        return {
            "industry": self.industry,
            "audience_titles": self.audience_titles,
            "competitors": self.competitors,
            "company_website": self.company_website,
            "seo_keywords": self.seo_keywords,
            "company_size": self.company_size,
            "company_revenue": self.company_revenue,
            "feedback_type": self.feedback_type,
            "feedback_item": self.feedback_item,
        }

    def describe(self) -> str:
        """Context block shared by the verification and generation prompts."""
        lines = [
            f"- Industry: {self.industry or 'not specified'}",
            f"- Audience titles: {', '.join(self.audience_titles) or 'various'}",
            f"- Competitors: {', '.join(self.competitors) or 'not specified'}",
            f"- Company website: {self.company_website or 'not provided'}",
            f"- Company size: {', '.join(self.company_size) or 'various'}",
            f"- Company revenue: {', '.join(self.company_revenue) or 'various'}",
        ]
        if self.feedback_type:
            lines.append(f"- Feedback type: {self.feedback_type}")
        if self.feedback_item:
            item = self.feedback_item
            lines.append(f"- Feedback item: {item[:200]}{'...' if len(item) > 200 else ''}")
        return "\n".join(lines)
