"""
credentials — connection and credential storage.

Provides:
  • CredentialVault: create-or-update of connections keyed on (plugin, external id)
  • CredentialResolver: attaches stored credentials to execute requests
  • Fernet encryption of secrets at rest
"""
