"""
channels — connections to external booking channels.

Provides:
  • Airbnb OAuth2 with PKCE (authorize redirect, code exchange, callback)
  • Per-user credential storage with lazy, race-free token refresh
  • Fernet encryption of tokens and API keys at rest
  • Channex API-key connection, account mirror and soft disconnect

Each OAuth provider is a subclass of BaseChannel.
"""
