"""vidrelay: stream resolution, HLS proxying and segment download engine."""

__version__ = "0.1.0"
