"""toolbot — tool dispatch with human confirmation and durable scheduling."""

__version__ = "0.1.0"
