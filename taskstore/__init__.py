"""Task persistence behind interchangeable storage backends."""

__version__ = "1.0.0"
