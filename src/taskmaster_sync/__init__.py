"""Bidirectional sync between TaskMaster task files and monday.com boards."""

__version__ = "0.3.0"
