"""SecureChat: end-to-end encrypted direct and group messaging."""

__version__ = "0.1.0"
