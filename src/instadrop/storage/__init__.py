# src/instadrop/storage/__init__.py
"""
Durable state for drops.

- records: the Drop record and its JSON layout
- drop_store: the single JSON collection of drop records
- drop_cache: read cache in front of the store, invalidated on write
- artifacts: the upload directory holding the sold files
"""
