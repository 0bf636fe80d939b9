"""famy voice client: live capture, streaming transcription and turn dispatch."""

__version__ = "0.3.0"
