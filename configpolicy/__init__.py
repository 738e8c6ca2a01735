"""Quantity parsing, object comparison, related-object status, encryption keys,
metrics and operator-policy reconciliation for Kubernetes policies."""

__version__ = "0.1.0"

__all__ = [
    "compare",
    "encryption",
    "metadata",
    "metrics",
    "operator_policy",
    "quantity",
    "related",
]