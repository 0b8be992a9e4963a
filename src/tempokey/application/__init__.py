"""Application layer: caching policy and orchestration services."""
