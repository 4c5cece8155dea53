"""Class session service: event-sourced write side and read projection."""

__version__ = "0.1.0"
