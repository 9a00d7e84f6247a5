"""NASBox: incremental media backup to SMB shares."""

__version__ = "0.1.0"
