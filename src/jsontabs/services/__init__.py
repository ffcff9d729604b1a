"""Service layer helpers (storage, settings, history, session)."""
