"""Rollup node core: configuration, RLP, batches, deposits, sync and the derivation driver."""

__version__ = "0.1.0"