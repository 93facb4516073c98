"""Infrastructure adapters: database, reputation lookup, scheduler."""
