"""Terminal widgets usable without a GUI toolkit."""

from .stream_output import StreamWidget

__all__ = ["StreamWidget"]
