"""Storage engine: capacity, document store, usage, auto-save, lifecycle, sync."""
