# src/securechat/services/__init__.py
"""Protocol and server services for SecureChat."""
