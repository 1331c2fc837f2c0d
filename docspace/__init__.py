"""Service layer for a documentation platform: space members, file uploads, tags, versions, search and publication models."""

__version__ = "0.1.0"