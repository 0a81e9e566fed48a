"""recipebox: terminal client for the recipe-sharing network's messages and notifications."""

__version__ = "0.1.0"
