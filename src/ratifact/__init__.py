"""ratifact - track, rebuild and safely purge build artifacts."""

__version__ = "0.3.0"
