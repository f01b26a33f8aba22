"""Domain services for the event server.

Each module encapsulates one concern (ingestion, platform registry, queries)
and raises domain exceptions (``LookupError``, ``ValueError``), never HTTP
exceptions -- that translation is the router's responsibility.
"""
