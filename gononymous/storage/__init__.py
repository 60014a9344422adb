"""A minimal bucket and object storage server with CSV metadata on disk."""

__all__ = ["metadata", "models", "server"]