"""Policy-gated command execution and event notification pipeline."""

__version__ = "0.1.0"
