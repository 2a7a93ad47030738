"""CogniLeap generation backend: resilient study-tool generation and document chat."""

__version__ = "0.1.0"
