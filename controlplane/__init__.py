"""Mirror synchronization controlplane."""

__version__ = "0.1.0"
