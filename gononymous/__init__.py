"""Anonymous imageboard with a small S3-style object store for its images."""

__version__ = "0.1.0"
__all__ = ["board", "storage"]