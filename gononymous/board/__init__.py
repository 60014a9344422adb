"""The imageboard: records, services, SQLite storage, HTTP clients and web layer."""

__all__ = ["clients", "database", "domain", "handlers", "services", "utils", "web"]