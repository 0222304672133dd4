"""Run bookkeeping and persistence: sessions, progress, cache, documents."""
