import logging
from collections import Counter
from typing import List, Sequence

from pydantic import BaseModel, Field

from models import ComicPage, PageLayout, Panel

logger = logging.getLogger(__name__)


class LayoutAudit(BaseModel):
    """Problems found in a provider-returned page grouping."""
    missing: List[int] = Field(default_factory=list)
    duplicated: List[int] = Field(default_factory=list)
    out_of_range: List[int] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (self.missing or self.duplicated or self.out_of_range)


def audit_layouts(layouts: Sequence[PageLayout], panel_count: int) -> LayoutAudit:
    """Every index in [0, panel_count) should appear in exactly one page."""
    counts = Counter(i for page in layouts for i in page.panel_indices)
    return LayoutAudit(
        missing=[i for i in range(panel_count) if counts[i] == 0],
        duplicated=sorted(i for i, n in counts.items() if n > 1 and 0 <= i < panel_count),
        out_of_range=sorted(i for i in counts if not 0 <= i < panel_count),
    )


def resolve_pages(layouts: Sequence[PageLayout], panels: Sequence[Panel]) -> List[ComicPage]:
    """
    Resolves panel indices against the generated panels.

    Indices that do not resolve are dropped rather than failing the run, and
    a panel is placed only at its first reference. Omitted panels are logged.
    """
    audit = audit_layouts(layouts, len(panels))
    if audit.out_of_range:
        logger.warning("Layout references panels that do not exist, dropping: %s", audit.out_of_range)
    if audit.missing:
        logger.warning("Layout omits panels: %s", audit.missing)
    if audit.duplicated:
        logger.warning("Layout uses panels more than once, keeping first use: %s", audit.duplicated)

    placed = set()
    pages = []
    for page in layouts:
        resolved = []
        for i in page.panel_indices:
            if 0 <= i < len(panels) and i not in placed:
                placed.add(i)
                resolved.append(panels[i])
        pages.append(ComicPage(layout=page.layout, panels=resolved))
    return pages
