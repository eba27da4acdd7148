"""Exception taxonomy for the enrichment run.

Only ``ConfigurationError`` is allowed to escape a run; everything else is
converted into a failed ``WorkerResult`` at the worker boundary.
"""

from __future__ import annotations

from typing import Iterable, Sequence


class EnrichmentError(Exception):
    """Base class for all enrichment errors."""


class ConfigurationError(EnrichmentError):
    """Required settings are missing. Raised before any task starts."""

    def __init__(self, missing: Iterable[str] | str):
        if isinstance(missing, str):
            self.missing: tuple[str, ...] = ()
            super().__init__(missing)
            return
        self.missing = tuple(missing)
        super().__init__(f"Missing required configuration: {', '.join(self.missing)}")


class SessionError(EnrichmentError):
    """A session step could not be completed."""


class ElementNotFoundError(SessionError):
    def __init__(self, selectors: Sequence[str], timeout_ms: int, step: str = ""):
        self.selectors = tuple(selectors)
        self.timeout_ms = timeout_ms
        self.step = step
        label = f" for step '{step}'" if step else ""
        super().__init__(
            f"No visible element{label} after {timeout_ms}ms (tried {len(self.selectors)} selectors: "
            f"{', '.join(self.selectors)})"
        )


class NavigationTimeoutError(SessionError):
    def __init__(self, url: str, timeout_ms: int):
        self.url = url
        self.timeout_ms = timeout_ms
        super().__init__(f"Navigation to {url} timed out after {timeout_ms}ms")


class CompletionTimeoutError(EnrichmentError, TimeoutError):
    def __init__(self, sources: Sequence[str], timeout_ms: int):
        self.sources = tuple(sources)
        self.timeout_ms = timeout_ms
        super().__init__(
            f"No completion signal from [{', '.join(self.sources)}] within {timeout_ms}ms"
        )


class UploadError(EnrichmentError):
    """Artifact upload failed. The attempt is over; a retry regenerates the artifact."""


class RecordStoreError(EnrichmentError):
    """Select or update against the record store failed."""


class NoMatchFoundError(EnrichmentError):
    def __init__(self, address: str, variants_tried: int):
        self.address = address
        self.variants_tried = variants_tried
        super().__init__(
            f"No matching address found for '{address}' after trying {variants_tried} variation(s)"
        )
