"""
webhooks — inbound webhook ingestion and subscription fan-out.

Provides:
  • WebhookIngestionPipeline: verify, resolve connection, parse, log
  • SubscriptionMatcher + EventDispatcher: HTTP and internal delivery
  • /webhook routes
"""
