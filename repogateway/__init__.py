"""Building blocks of a repository publication gateway: lease paths, signing, configuration, logging, statistics and receiver workers."""

__version__ = "1.0.0"