"""aidev: change impact analysis and token-budgeted context packs."""

__version__ = "0.1.0"
