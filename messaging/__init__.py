"""Messaging app initialization.

The messaging app holds the durable 1-to-1 conversation between a brand
and a creator and the ordered message history inside it.
"""
