"""
Outbound Discord traffic.

- **webhook_gateway.py**: ``WebhookGateway`` for webhook send / edit / fetch /
  delete over the REST API, ``SendResult`` and the "webhook gone" error check.
"""
