"""
Error taxonomy for NichePress.

Transport failures on the LLM path and domain errors are fatal and surface
to the caller. Suggestion failures and unparseable model output never reach
this module: they degrade to empty results or fallback values.
"""

from typing import Optional


class NichePressError(Exception):
    """Base class for all NichePress errors."""


class LLMTransportError(NichePressError):
    """The LLM endpoint was unreachable, timed out, or answered without content."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NicheNotFoundError(NichePressError):
    def __init__(self, niche_id: int):
        super().__init__(f"Niche not found: {niche_id}")
        self.niche_id = niche_id


class DuplicateNicheError(NichePressError):
    def __init__(self, name: str):
        super().__init__(f"Niche already exists: {name}")
        self.name = name


class KeywordNotFoundError(NichePressError):
    def __init__(self, keyword_id: int):
        super().__init__(f"Keyword not found: {keyword_id}")
        self.keyword_id = keyword_id


class DuplicateKeywordError(NichePressError):
    """A keyword phrase is already present somewhere in the store."""

    def __init__(self, keyword: str):
        super().__init__(f"Keyword already exists: {keyword}")
        self.keyword = keyword


class InvalidStatusTransition(NichePressError):
    """Raised when a keyword is moved out of a terminal status."""


class KeywordAlreadyWrittenError(InvalidStatusTransition):
    def __init__(self, keyword: str):
        super().__init__(f"Article already exists for keyword: {keyword}")
        self.keyword = keyword


class ContentTooSimilarError(NichePressError):
    """The similarity gate blocked a manually requested article."""

    def __init__(self, keyword: str, overlapping_titles: list[str]):
        overlap = ", ".join(overlapping_titles) if overlapping_titles else "unspecified articles"
        super().__init__(f"Content too similar to existing articles for '{keyword}': {overlap}")
        self.keyword = keyword
        self.overlapping_titles = overlapping_titles


class WorkflowError(NichePressError):
    """A daily run failed. The failed ExplorationLog has already been written."""

    def __init__(self, niche_id: int, message: str):
        super().__init__(f"Daily workflow failed for niche {niche_id}: {message}")
        self.niche_id = niche_id
