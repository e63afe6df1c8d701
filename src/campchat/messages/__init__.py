"""Message models, payload codec and the shared fragment reducer."""
