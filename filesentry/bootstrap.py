"""Construct the FileSentry scan stack from settings.

Shared by the API startup hook and the Celery worker so that both processes
wire collaborators identically:

* ClamAV is included when ``CLAMAV_SOCKET_PATH`` or ``CLAMAV_HOST`` is set;
  otherwise every scan records the antivirus stage as degraded.
* VirusTotal is included only when ``VIRUSTOTAL_API_KEY`` is set.
* Custom heuristic rules are loaded from ``HEURISTIC_RULES_PATH`` when set.
"""

from __future__ import annotations

import logging

from filesentry.config import Settings
from filesentry.core.adapters.clamav_adapter import ClamAVAdapter
from filesentry.core.adapters.virustotal_adapter import VirusTotalAdapter
from filesentry.core.av_adapter import AVEngineAdapter
from filesentry.core.hashing import HashComputer
from filesentry.core.heuristic_scanner import HeuristicCodeScanner
from filesentry.core.orchestrator import ScanOrchestrator
from filesentry.core.patterns.code_rules import load_rule_set
from filesentry.core.reputation import ReputationClient
from filesentry.core.result_store import ResultStore
from filesentry.services.result_store import build_result_store

logger = logging.getLogger(__name__)


def build_av_engine(settings: Settings) -> AVEngineAdapter | None:
    if settings.clamav_socket_path:
        return ClamAVAdapter(
            settings.clamav_socket_path,
            timeout=settings.clamav_timeout_seconds,
            stream=settings.clamav_stream,
        )
    if settings.clamav_host:
        return ClamAVAdapter(
            host=settings.clamav_host,
            port=settings.clamav_port,
            timeout=settings.clamav_timeout_seconds,
            stream=settings.clamav_stream,
        )
    logger.warning("No ClamAV daemon configured; antivirus stage will be skipped")
    return None


def build_reputation_client(settings: Settings) -> ReputationClient | None:
    if not settings.virustotal_api_key:
        logger.info("VIRUSTOTAL_API_KEY not set; reputation lookups disabled")
        return None
    return VirusTotalAdapter(
        settings.virustotal_api_key,
        base_url=settings.virustotal_base_url,
        timeout=settings.reputation_timeout_seconds,
    )


def build_orchestrator(settings: Settings, store: ResultStore | None = None) -> ScanOrchestrator:
    """Return a fully wired :class:`ScanOrchestrator`.

    Args:
        settings: Application settings.
        store: Result store to use.  Built from settings when ``None``.
    """
    scanner = HeuristicCodeScanner(
        rule_set=load_rule_set(settings.heuristic_rules_path),
        code_extensions=settings.code_extension_set,
    )
    return ScanOrchestrator(
        store=store or build_result_store(settings),
        hash_computer=HashComputer(),
        av_engine=build_av_engine(settings),
        heuristic_scanner=scanner,
        reputation_client=build_reputation_client(settings),
        max_upload_bytes=settings.max_upload_bytes,
        av_timeout_seconds=settings.clamav_timeout_seconds,
        av_max_concurrency=settings.av_max_concurrency,
        reputation_timeout_seconds=settings.reputation_timeout_seconds,
        reputation_high_threshold=settings.reputation_high_threshold,
    )
