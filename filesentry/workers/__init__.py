"""FileSentry Celery worker package.

Modules
-------
scan_worker
    Background single-file scan task wrapping
    :class:`~filesentry.core.orchestrator.ScanOrchestrator`.
"""
