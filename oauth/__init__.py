"""
oauth — install flow for OAuth2 plugins.

Provides:
  • Single-use state tokens and PKCE verifiers over a TTL store (memory or Redis)
  • OAuthInstallOrchestrator: authorization URL, callback, code exchange
  • /oauth install + callback routes
"""
