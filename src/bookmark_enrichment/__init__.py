"""Bookmark enrichment: research, extract and classify saved bookmarks concurrently."""

__version__ = "0.1.0"
