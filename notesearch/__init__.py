"""notesearch: hybrid semantic + keyword search over a local note store."""

__version__ = "0.1.0"
