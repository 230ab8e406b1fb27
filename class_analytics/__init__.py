"""Per-student grade and behavior analytics for a school class."""

__version__ = "1.0.0"
