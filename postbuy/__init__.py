"""Post-buy property enrichment."""

from postbuy.orchestrator import EnrichmentOrchestrator, run_all, run_with_retry
from postbuy.workers import build_default_tasks

__all__ = ["EnrichmentOrchestrator", "build_default_tasks", "run_all", "run_with_retry"]
