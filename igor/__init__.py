"""igor: NVIDIA driver installer built on a sequential workflow engine with rollback."""

__version__ = "0.9.0"
