"""
Data operations package: uploaded spreadsheets in SQLite.

Ingestion (schema inference, isolated per-dataset tables), the dataset
registry, conversation history, and sandboxed read-only queries.
"""
