"""Core configuration for SecureChat."""
