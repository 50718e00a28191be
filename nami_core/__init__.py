"""
nami_core: Cardano light-wallet core.

Key custody, CIP-1852 account derivation, an account store backed by
pluggable storage and data providers, CIP-8 / witness signing, and a
versioned migration engine for the persisted wallet record.
"""

__version__ = "1.0.0"

__all__ = [
    "errors",
    "config",
    "logging_config",
    "storage",
    "primitives",
    "vault",
    "derivation",
    "providers",
    "settings",
    "retry",
    "accounts",
    "signing",
    "migration",
    "migrations",
    "wallet",
]
