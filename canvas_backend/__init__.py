"""Canvas API: versioned canvas state, time and weather driven evolution."""

__version__ = "0.1.0"
