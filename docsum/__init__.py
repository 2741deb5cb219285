"""Document summarization pipeline with a resilient outbound request layer."""

__version__ = "1.0.0"
