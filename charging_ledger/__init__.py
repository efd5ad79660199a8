"""Core package for the charging cost ledger updater."""

__all__ = [
    "config",
    "errors",
    "models",
    "fetcher",
    "extractor",
    "usage_client",
    "rates",
    "calculator",
    "reconciler",
    "store",
    "runtime",
    "cli",
]
