"""Detector backend adapter implementations.

**AV engine adapters** (implement :class:`~filesentry.core.av_adapter.AVEngineAdapter`):

* :class:`~filesentry.core.adapters.clamav_adapter.ClamAVAdapter` — ClamAV daemon

**Reputation adapters** (implement :class:`~filesentry.core.reputation.ReputationClient`):

* :class:`~filesentry.core.adapters.virustotal_adapter.VirusTotalAdapter` — VirusTotal v3 API
"""

from filesentry.core.adapters.clamav_adapter import ClamAVAdapter
from filesentry.core.adapters.virustotal_adapter import VirusTotalAdapter

__all__ = [
    "ClamAVAdapter",
    "VirusTotalAdapter",
]
