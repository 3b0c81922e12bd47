"""Contact Finder - business contact discovery from search results."""

__version__ = "0.1.0"
