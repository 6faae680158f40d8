"""FileSentry core scanning components.

This package contains the data model, the detector components (hashing,
antivirus adapter interface, heuristic code scanner, reputation client
interface), threat aggregation and the scan orchestrator.
"""
