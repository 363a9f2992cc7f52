"""hookvault: webhook ingest, resource archival and retention purge.

Webhook batches are signature-checked and queued; each event's resource is
fetched, compressed and archived by a retryable task; a daily task chain
purges records past the retention window.
"""

__version__ = "0.1.0"
