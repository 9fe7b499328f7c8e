"""
plugins — capability contracts and the registry that resolves them.

Each plugin (Slack, Jira, …) provides any of OAuthCapability,
WebhookCapability and ExecutorCapability, registered under its plugin id.
"""
