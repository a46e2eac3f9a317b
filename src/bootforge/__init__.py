"""bootforge - builds, verifies and packages PRoot-compatible bootstrap trees."""

__version__ = "0.1.0"
