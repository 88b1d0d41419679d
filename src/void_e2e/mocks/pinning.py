"""In-memory stand-in for the IPFS pinning API void-server talks to."""
from __future__ import annotations

import base64
import hashlib
import json
import logging
import mimetypes
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

MOCK_PEER_ID = "QmMockPeerId123456789"
MOCK_ADDRESSES = ["/ip4/127.0.0.1/tcp/5001"]
DEFAULT_GATEWAY = "http://localhost:8080/ipfs"
CID_LENGTH = 46


def derive_cid(source: Union[str, bytes], metadata: Optional[Dict[str, Any]] = None) -> str:
    """Deterministic CIDv0-looking identifier for a path/content + metadata."""
    digest = hashlib.sha256()
    digest.update(source if isinstance(source, bytes) else source.encode("utf-8"))
    digest.update(json.dumps(metadata or {}, sort_keys=True, default=str).encode("utf-8"))
    encoded = base64.b32encode(digest.digest()).decode("ascii").rstrip("=").lower()
    return ("Qm" + encoded)[:CID_LENGTH]


def _size_and_name(source: Union[str, bytes]) -> tuple[int, str]:
    if isinstance(source, bytes):
        return len(source), "content"
    if os.path.isfile(source):
        return os.path.getsize(source), os.path.basename(source)
    return len(source.encode("utf-8")), os.path.basename(source) or "mock-file"


class MockPinningService:
    """Pins keyed by derived content id."""

    name = "ipfs"

    def __init__(self, gateway: str = DEFAULT_GATEWAY) -> None:
        self.gateway = gateway.rstrip("/")
        self.pins: Dict[str, Dict[str, Any]] = {}
        self.online = False

    # ---- adapter lifecycle ------------------------------------------------------
    def start(self) -> None:
        self.online = True
        logger.info("Mock pinning service ready (peer %s)", MOCK_PEER_ID)

    def stop(self) -> None:
        self.online = False

    def reset(self) -> None:
        self.pins.clear()

    def is_available(self) -> bool:
        return self.online

    # ---- pinning ----------------------------------------------------------------
    def pin_file(self, source: Union[str, bytes],
                 metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Pin a file path or raw content.

        Args:
            source: Filesystem path, or the content itself as bytes
            metadata: Optional dict; 'name' and 'type' are honoured

        Returns:
            The pin record, including its derived 'cid'
        """
        metadata = dict(metadata or {})
        cid = derive_cid(source, metadata)
        size, default_name = _size_and_name(source)
        name = metadata.get("name") or default_name
        pin = {
            "cid": cid,
            "name": name,
            "type": metadata.get("type") or "file",
            "mimeType": mimetypes.guess_type(name)[0] or "application/octet-stream",
            "size": size,
            "pinnedAt": datetime.now(timezone.utc).isoformat(),
            "gatewayUrl": f"{self.gateway}/{cid}",
            "metadata": metadata,
        }
        self.pins[cid] = pin
        return pin

    def unpin(self, cid: str) -> Dict[str, Any]:
        self.pins.pop(cid, None)
        return {"success": True, "cid": cid}

    def is_pinned(self, cid: str) -> bool:
        return cid in self.pins

    def list_pins(self) -> List[Dict[str, Any]]:
        return list(self.pins.values())

    # ---- status -----------------------------------------------------------------
    def check_daemon(self) -> Dict[str, Any]:
        return {"online": self.online, "peerId": MOCK_PEER_ID, "addresses": list(MOCK_ADDRESSES)}

    def get_status(self) -> Dict[str, Any]:
        by_type: Dict[str, int] = {}
        for pin in self.pins.values():
            by_type[pin["type"]] = by_type.get(pin["type"], 0) + 1
        return {
            "enabled": True,
            "daemonOnline": self.online,
            "peerId": MOCK_PEER_ID,
            "metrics": {"totalPins": len(self.pins), "byType": by_type},
        }
