"""Conversation memory: scoring, extraction, retrieval and context assembly."""
