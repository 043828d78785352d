"""Event scoring backend: judge assignments, bulk mutation and CSV interchange."""

__version__ = "0.1.0"
