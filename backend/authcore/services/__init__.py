"""Application services: use-case orchestration over units of work."""
