import threading
import time
from typing import Dict, List, Optional
from uuid import uuid4

from storefront.adapters.mailer import SendResult


class MockMailerAdapter:
    """
    In-memory mailer. send() records every attempt in `outbox` and returns a
    SendResult; it never raises.

    fail_kinds / fail_all simulate transport errors for tests.
    """

    def __init__(self, delay_ms: int = 0, fail_all: bool = False, fail_kinds=None):
        self.delay = delay_ms / 1000.0
        self.fail_all = fail_all
        self.fail_kinds = set(fail_kinds or ())
        self.outbox: List[Dict] = []
        self.failures: List[Dict] = []
        self._lock = threading.Lock()

    def send(self, kind: str, address: str, data: Optional[Dict] = None) -> SendResult:
        if self.delay:
            time.sleep(self.delay)
        entry = {"kind": kind, "to": address, "data": dict(data or {})}
        with self._lock:
            if self.fail_all or kind in self.fail_kinds:
                self.failures.append(entry)
                return SendResult(success=False, error="Simulated transport failure")
            message_id = f"mock-{uuid4().hex[:12]}"
            entry["id"] = message_id
            self.outbox.append(entry)
        return SendResult(success=True, id=message_id)

    def sent(self, kind: Optional[str] = None, to: Optional[str] = None) -> List[Dict]:
        with self._lock:
            return [
                m
                for m in self.outbox
                if (kind is None or m["kind"] == kind) and (to is None or m["to"] == to)
            ]

    def health_check(self) -> bool:
        return True
