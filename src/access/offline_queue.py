"""
Client-side buffer for scans made while an agent handset is offline.

Scans are persisted to a JSON file so that they survive an application
restart. ``flush`` uploads every pending scan in a single batch to the
``/scan/sync`` endpoint; on success the uploaded scans are dropped, on any
failure they go back to ``pending`` for the next attempt. Scans found in
``syncing`` (an upload interrupted by a crash) are part of the next batch;
the server recognises them by ``scan_id`` if the earlier upload landed.
"""

from typing import List, Optional, Dict, Any, Set
from datetime import datetime, timezone
from pathlib import Path
import json
import logging
import os
import threading
import uuid

import httpx

logger = logging.getLogger(__name__)

PENDING = "pending"
SYNCING = "syncing"

class OfflineScanQueue:
    """Durable FIFO of scans awaiting synchronisation"""

    def __init__(
        self,
        path: str,
        client: httpx.Client,
        sync_path: str = "/api/v1/access/scan/sync",
        device_id: Optional[int] = None
    ):
        self.path = Path(path)
        self.client = client
        self.sync_path = sync_path
        self.device_id = device_id
        self._lock = threading.Lock()

    def get_queue(self) -> List[Dict[str, Any]]:
        with self._lock:
            return self._read()

    def pending(self) -> List[Dict[str, Any]]:
        return [s for s in self.get_queue() if s["status"] == PENDING]

    def enqueue(
        self,
        credential: str,
        trip_id: Optional[str] = None,
        direction: str = "entry",
        timestamp: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Buffer a scan that could not reach the validation service"""
        scanned_at = timestamp or datetime.now(timezone.utc)
        scan = {
            "id": str(uuid.uuid4()),
            "credential": credential,
            "trip_id": trip_id,
            "direction": direction,
            "timestamp": scanned_at.isoformat(),
            "status": PENDING,
        }
        with self._lock:
            queue = self._read()
            queue.append(scan)
            self._write(queue)
        return scan

    def flush(self, device_id: Optional[int] = None) -> bool:
        """Upload pending scans as one batch.

        Returns True when the server accepted the batch (or there was nothing
        to send) and False when the scans were put back for a later retry.
        """
        device = device_id if device_id is not None else self.device_id
        if device is None:
            raise ValueError("A device id is required to synchronise offline scans")

        with self._lock:
            queue = self._read()
            # Scans left in SYNCING by an interrupted upload are sent again
            batch = [s for s in queue if s["status"] in (PENDING, SYNCING)]
            if not batch:
                return True
            for scan in batch:
                scan["status"] = SYNCING
            self._write(queue)
        sent_ids = {s["id"] for s in batch}

        payload = {
            "device_id": device,
            "validations": [
                {
                    "credential": s["credential"],
                    "timestamp": s["timestamp"],
                    "scan_id": s["id"],
                    "trip_id": s.get("trip_id"),
                    "direction": s.get("direction", "entry"),
                }
                for s in batch
            ],
        }

        uploaded = False
        try:
            response = self.client.post(self.sync_path, json=payload)
            response.raise_for_status()
            uploaded = True
        except httpx.HTTPError as e:
            logger.warning(f"Offline sync of {len(batch)} scans failed: {e}")
            return False
        finally:
            if not uploaded:
                self._rollback_syncing(sent_ids)

        try:
            summary = response.json().get("summary", {})
        except ValueError:
            summary = {}
        logger.info(f"Offline sync uploaded {len(batch)} scans: {summary}")

        with self._lock:
            remaining = [s for s in self._read() if s["id"] not in sent_ids]
            self._write(remaining)
        return True

    def clear(self):
        with self._lock:
            self._write([])

    def _rollback_syncing(self, scan_ids: Set[str]):
        with self._lock:
            queue = self._read()
            for scan in queue:
                if scan["id"] in scan_ids:
                    scan["status"] = PENDING
            self._write(queue)

    def _read(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        with self.path.open("r", encoding="utf-8") as f:
            data = f.read()
        return json.loads(data) if data.strip() else []

    def _write(self, queue: List[Dict[str, Any]]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(queue, f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)
