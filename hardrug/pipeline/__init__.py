"""Task pipeline: single-consumer queue and per-contract orchestration."""
