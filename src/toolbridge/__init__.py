"""Session-oriented tool server and LLM-driven tool-invocation client."""
