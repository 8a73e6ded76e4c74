"""Offers app: priced proposals exchanged inside a conversation."""
