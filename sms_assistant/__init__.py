"""Personal SMS assistant: contacts, shared lists and trip tracking over text message."""

__version__ = "1.0.0"
