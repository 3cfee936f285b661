"""Wire encoders for monitoring data."""
