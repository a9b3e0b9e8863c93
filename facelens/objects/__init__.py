"""Object detection sources (local YOLO or a remote inference endpoint)."""
