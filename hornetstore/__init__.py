"""Nostr relay storage building blocks: events and filters, versioned trees, DAG leaves, statistics, sync tables and negentropy framing."""

__version__ = "0.1.0"