"""termgate — websocket gateway to project-bound shell sessions."""

__version__ = "0.1.0"
