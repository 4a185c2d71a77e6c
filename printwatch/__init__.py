"""printwatch - real-time 3D print failure detection and quality scoring."""

__version__ = "0.1.0"
