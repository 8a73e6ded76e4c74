"""Payments app: hands accepted offers to the payment provider."""
