"""LLM provider access using the caller's own API keys."""
