"""Run a debounced command upon changes to the filesystem.

This package watches a file or directory and, once a burst of changes has
settled, runs an executable exactly once.
"""

__version__ = "1.0.2"
