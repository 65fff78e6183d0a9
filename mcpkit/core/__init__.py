__all__ = [
    "citations",
    "config",
    "llm_provider",
    "logging",
    "models",
    "schemas",
]
