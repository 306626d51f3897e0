"""voidx: LLM application platform backend."""
