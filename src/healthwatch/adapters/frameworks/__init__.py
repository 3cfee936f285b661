"""Web framework adapters exposing the monitoring engine."""
