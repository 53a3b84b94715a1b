"""On-demand image thumbnail resolver with a write-back object cache."""

__version__ = "0.1.0"
