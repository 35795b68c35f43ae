"""Student information system core: enrollment rules, grading and persistence."""

__version__ = "1.0.0"
