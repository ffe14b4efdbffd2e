"""Infrastructure adapters: the shared document store and the local job queue database."""
