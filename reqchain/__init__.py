"""reqchain - run API requests kept as plain files, with chaining."""

__version__ = "0.1.0"
