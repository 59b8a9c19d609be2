"""State estimation, hardware abstraction, command shaping and low-level robot protocol for quadruped robots."""

__version__ = "0.1.0"