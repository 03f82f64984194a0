"""
Identity verification sessions.

A principal that proves possession of a beneficiary's government ID (last four
digits + expiry date) gets a short-lived session. Expiry is evaluated lazily on
read; `sweep()` only reclaims memory. Sessions live for the process lifetime.

Concurrent calls for one principal serialize on a per-principal lock;
different principals never contend. A lock entry lives only while some call
holds or waits on it, so reads for unknown principals leave nothing behind.
"""
from __future__ import annotations

import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Union

from remitdesk.observability.logging import log
import remitdesk.observability.metrics as metrics
from remitdesk.settings import settings
from remitdesk.store.directory import BeneficiaryDirectory
from remitdesk.store.models import VerificationSession
from remitdesk.utils.time import Clock, MINUTE_MS, iso_from_ms, now_ms

_LAST_FOUR_RE = re.compile(r"^\d{4}$")
_EXPIRY_RE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")

# Rejection reasons. NO_MATCH covers both a wrong last-4 and a wrong expiry.
NO_MATCH = "NO_MATCH"
AMBIGUOUS_MATCH = "AMBIGUOUS_MATCH"
EXPIRED_ID = "EXPIRED_ID"
MALFORMED_PROOF = "MALFORMED_PROOF"


@dataclass(frozen=True)
class CredentialProof:
    lastFourDigits: str
    expiryDate: str  # DD/MM/YYYY


@dataclass(frozen=True)
class Verified:
    session: VerificationSession
    verified: bool = True


@dataclass(frozen=True)
class VerificationRejected:
    reason: str
    message: str = "Identity verification failed. Please check the details and try again."
    verified: bool = False


VerificationResult = Union[Verified, VerificationRejected]


def parse_expiry(value: str) -> Optional[date]:
    m = _EXPIRY_RE.match((value or "").strip())
    if not m:
        return None
    day, month, year = (int(x) for x in m.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


class VerificationSessionStore:
    def __init__(self, directory: BeneficiaryDirectory, *, ttl_minutes: Optional[int] = None,
                 clock: Clock = now_ms):
        self.directory = directory
        self.ttl_ms = int(ttl_minutes if ttl_minutes is not None else settings.VERIFICATION_TTL_MINUTES) * MINUTE_MS
        self.clock = clock
        self._sessions: Dict[str, VerificationSession] = {}
        # principal -> [lock, holders + waiters]
        self._locks: Dict[str, list] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _locked(self, principal_id: str):
        with self._locks_guard:
            entry = self._locks.get(principal_id)
            if entry is None:
                entry = self._locks[principal_id] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[principal_id]

    def _match(self, principal_id: str, proof: CredentialProof) -> Union[str, "VerificationSession"]:
        if not _LAST_FOUR_RE.match(proof.lastFourDigits or ""):
            return MALFORMED_PROOF
        expiry = parse_expiry(proof.expiryDate)
        if expiry is None:
            return MALFORMED_PROOF

        candidates = [
            b for b in self.directory.by_last_four(principal_id, proof.lastFourDigits)
            if b.idExpiry == expiry.isoformat()
        ]
        if not candidates:
            return NO_MATCH
        if len(candidates) > 1:
            return AMBIGUOUS_MATCH

        now = self.clock()
        today = datetime.fromtimestamp(now / 1000, tz=timezone.utc).date()
        if expiry < today:
            return EXPIRED_ID

        return VerificationSession(
            principalId=principal_id,
            verifiedAt=now,
            expiresAt=now + self.ttl_ms,
            beneficiaryId=candidates[0].id,
            lastFour=proof.lastFourDigits,
        )

    def verify(self, principal_id: str, proof: CredentialProof) -> VerificationResult:
        """Never raises on a mismatch; returns a typed rejection instead."""
        with self._locked(principal_id):
            outcome = self._match(principal_id, proof)
            if isinstance(outcome, str):
                metrics.increment_verification(False)
                log(event="verification_rejected", principalId=principal_id, reason=outcome,
                    lastFourDigits=proof.lastFourDigits)
                return VerificationRejected(reason=outcome)
            # New verification supersedes any previous session
            self._sessions[principal_id] = outcome

        metrics.increment_verification(True)
        log(event="verification_stored", principalId=principal_id, beneficiaryId=outcome.beneficiaryId,
            expiresAt=iso_from_ms(outcome.expiresAt))
        return Verified(session=outcome)

    def get(self, principal_id: str) -> Optional[VerificationSession]:
        """Live session or None. Expired entries read as absent."""
        with self._locked(principal_id):
            session = self._sessions.get(principal_id)
            if session is None:
                return None
            if not session.is_live(self.clock()):
                del self._sessions[principal_id]
                return None
            return session

    def is_verified(self, principal_id: str) -> bool:
        return self.get(principal_id) is not None

    def clear(self, principal_id: str) -> None:
        with self._locked(principal_id):
            self._sessions.pop(principal_id, None)
        log(event="verification_cleared", principalId=principal_id)

    def status(self, principal_id: str) -> dict:
        session = self.get(principal_id)
        if session is None:
            return {"isVerified": False, "requiresVerification": True, "reason": "NO_VERIFICATION"}
        return {
            "isVerified": True,
            "requiresVerification": False,
            "reason": "VERIFIED",
            "verification": {
                "beneficiaryId": session.beneficiaryId,
                "verifiedAt": iso_from_ms(session.verifiedAt),
                "expiresAt": iso_from_ms(session.expiresAt),
                "timeRemaining": max(0, (session.expiresAt - self.clock()) // 1000),
            },
        }

    def sweep(self) -> int:
        """Drop expired sessions. Optional; reads already ignore them."""
        now = self.clock()
        principals = list(self._sessions.keys())
        removed = 0
        for pid in principals:
            with self._locked(pid):
                session = self._sessions.get(pid)
                if session is not None and not session.is_live(now):
                    del self._sessions[pid]
                    removed += 1
        if removed:
            log(event="verification_sweep", removed=removed)
        return removed

    def active(self) -> List[dict]:
        now = self.clock()
        principals = list(self._sessions.keys())
        out = []
        for pid in principals:
            session = self.get(pid)
            if session is not None:
                out.append({
                    "principalId": pid,
                    "beneficiaryId": session.beneficiaryId,
                    "expiresAt": iso_from_ms(session.expiresAt),
                    "timeRemaining": max(0, (session.expiresAt - now) // 1000),
                })
        return out
