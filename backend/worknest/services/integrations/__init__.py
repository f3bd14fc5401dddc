"""Outbound project integrations (signed webhooks, Slack incoming webhooks)."""
