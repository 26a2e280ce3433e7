"""csvsense: semantic analysis engine for tabular uploads."""

__version__ = "0.3.0"
