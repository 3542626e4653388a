"""Outbox-backed e-mail notifications over SES."""
