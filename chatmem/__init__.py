"""Chat backend with per-conversation memory."""
