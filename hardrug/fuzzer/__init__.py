"""Invariant harness synthesis and Foundry execution.

Implements dynamic rug-pull testing with:
  - Constructor injection (deterministic mint / ownership at deploy)
  - One invariant test contract per rug-pull technique
  - Forked-chain execution through ``forge test``
"""
