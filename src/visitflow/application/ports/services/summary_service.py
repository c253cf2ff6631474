"""
Summary extraction interface for turning a transcript into a structured visit summary.
"""

from abc import ABC, abstractmethod

from visitflow.domain.entities.visit_summary import VisitSummary


class SummaryExtractor(ABC):
    """Abstract service for visit summarization."""

    @abstractmethod
    async def summarize(self, transcript_text: str) -> VisitSummary:
        """
        Summarize a visit transcript.

        Implementations degrade malformed model output to a summary-only
        result instead of raising; only provider failures raise.
        """
        pass
