"""Identity, authorization and tenancy core for multi-tenant field operations."""

__version__ = "0.1.0"
