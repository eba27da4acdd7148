"""HTTP wrapper for the enrichment orchestrator."""
