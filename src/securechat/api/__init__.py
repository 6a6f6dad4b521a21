"""HTTP API for SecureChat."""
