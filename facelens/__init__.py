"""Live face/object detection overlay with a small local face gallery."""

__version__ = "0.3.0"
