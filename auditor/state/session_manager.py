"""
Session State Manager
=====================
Owns the durable record of every audit session.

Operations:
    load(session_id)                         -> SessionState | None
    get_or_create(session_id, config, ...)   -> SessionState
    append(session_id, candidate, review)    -> SessionState   (single mutation point)
    mark_complete(session_id, reason)        -> SessionState
    update_config(session_id, config)        -> SessionState   (explicit edit)
    update_metadata(session_id, **fields)    -> SessionState   (allowed after completion)

Guarantees:
    - current_loop == len(iterations) after every mutation
    - append is idempotent per loop index: a retried loop is ignored, not duplicated
    - write-after-compute: the new state is fully built before the store is
      touched; a failed write leaves the previously persisted history intact
    - a complete session only changes metadata / updated_at
    - one re-entrant lock per session id: mutations of the same session are
      serialised, different sessions never wait on each other; a lock lives
      only while some caller holds or waits on it

Integrity:
    Records are validated on load. Damaged records are classified as
    missing_fields, format_mismatch, partial_data or data_inconsistency,
    repaired, re-validated and written back. Unreadable records surface as
    SessionCorruptionError; get_or_create answers that by starting fresh.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional

from pydantic import ValidationError

from auditor.core import config
from auditor.core.errors import (
    SessionClosedError,
    SessionCorruptionError,
    SessionError,
    SessionNotFoundError,
)
from auditor.models.decisions import StagnationVerdict
from auditor.models.review import Review
from auditor.models.session import IterationRecord, SessionConfig, SessionState, utc_now
from auditor.services.session_store import FileSessionStore
from auditor.utils.completion_reasons import is_terminal_reason

MISSING_FIELDS = "missing_fields"
FORMAT_MISMATCH = "format_mismatch"
PARTIAL_DATA = "partial_data"
DATA_INCONSISTENCY = "data_inconsistency"

_REQUIRED_ITERATION_KEYS = ("loop", "candidate", "review")


@dataclass
class IntegrityReport:
    """Result of validating a raw session record."""
    is_valid: bool
    corruption_type: Optional[str] = None
    issues: List[str] = field(default_factory=list)
    recoverable: bool = True


def _iteration_complete(item: Any) -> bool:
    return isinstance(item, dict) and all(item.get(k) not in (None, "") for k in _REQUIRED_ITERATION_KEYS)


def validate_record(raw: Dict[str, Any]) -> IntegrityReport:
    """
    Check a raw session record for the known corruption types.

    The last detected type wins, mirroring the order in which repairs are
    applied (missing fields → formats → partial iterations → loop counter).
    """
    issues: List[str] = []
    corruption: Optional[str] = None

    if not raw.get("id"):
        issues.append("Missing session ID")
        corruption = MISSING_FIELDS
    if "config" not in raw:
        issues.append("Missing session configuration")
        corruption = MISSING_FIELDS
    if not raw.get("created_at") or not raw.get("updated_at"):
        issues.append("Missing timestamp fields")
        corruption = MISSING_FIELDS

    iterations = raw.get("iterations", [])
    if not isinstance(iterations, list):
        issues.append("Invalid iterations data type")
        corruption = FORMAT_MISMATCH
        iterations = []
    if "config" in raw and not isinstance(raw["config"], dict):
        issues.append("Invalid configuration data type")
        corruption = FORMAT_MISMATCH

    for i, item in enumerate(iterations):
        if not _iteration_complete(item):
            issues.append(f"Incomplete iteration data at index {i}")
            corruption = PARTIAL_DATA

    loops = [item.get("loop") for item in iterations if isinstance(item, dict)]
    if raw.get("current_loop", 0) != len(iterations) or loops != list(range(1, len(loops) + 1)):
        issues.append("Current loop number is inconsistent with iterations")
        corruption = DATA_INCONSISTENCY

    if corruption is None:
        try:
            SessionState.model_validate(raw)
        except ValidationError as e:
            issues.append(f"Schema validation failed: {e.error_count()} error(s)")
            corruption = FORMAT_MISMATCH

    return IntegrityReport(is_valid=not issues, corruption_type=corruption, issues=issues)


class SessionManager:
    """
    Session lifecycle on top of a pluggable store.

    Parameters
    ----------
    store : FileSessionStore or MemorySessionStore, optional
        Record storage. Defaults to a FileSessionStore under SESSION_STATE_DIR.
    clock : callable, optional
        Returns the current aware datetime; injected for deterministic tests.
    logger : logging.Logger, optional
    """

    def __init__(
        self,
        store=None,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[logging.Logger] = None,
    ):
        self._store = store if store is not None else FileSessionStore(config.SESSION_STATE_DIR)
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        # session id → [lock, holders + waiters]
        self._locks: Dict[str, list] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _session_lock(self, session_id: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.setdefault(session_id, [threading.RLock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[session_id]

    def _persist(self, state: SessionState) -> None:
        self._store.save(state.id, state.model_dump(mode="json"))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def load(self, session_id: str) -> Optional[SessionState]:
        """
        Load a session, repairing recoverable damage.

        Returns
        -------
        SessionState or None
            None when no record exists.

        Raises
        ------
        SessionCorruptionError
            The record is unreadable or could not be repaired.
        """
        with self._session_lock(session_id):
            raw = self._store.load(session_id)
            if raw is None:
                return None

            report = validate_record(raw)
            if report.is_valid:
                return SessionState.model_validate(raw)

            self._logger.warning(
                "Session %s failed integrity check (%s): %s",
                session_id, report.corruption_type, "; ".join(report.issues),
            )
            state = self.recover(session_id, raw, report.corruption_type)
            self._persist(state)
            self._logger.info("Recovered session %s (%s)", session_id, report.corruption_type)
            return state

    def recover(self, session_id: str, raw: Dict[str, Any], corruption_type: Optional[str] = None) -> SessionState:
        """
        Repair a damaged raw record into a valid SessionState.

        Every repair step is applied; corruption_type is only used for
        reporting. Iterations that cannot be rebuilt are dropped, and the loop
        counter is recomputed from what survives.
        """
        now = self._clock()
        repaired: Dict[str, Any] = {
            "id": raw.get("id") or session_id,
            "context_id": raw.get("context_id"),
            "created_at": raw.get("created_at") or now,
            "updated_at": now,
            "metadata": raw.get("metadata") if isinstance(raw.get("metadata"), dict) else {},
        }

        try:
            repaired["config"] = SessionConfig.model_validate(raw.get("config") or {})
        except ValidationError:
            repaired["config"] = SessionConfig()

        iterations = raw.get("iterations") if isinstance(raw.get("iterations"), list) else []
        records: List[IterationRecord] = []
        for item in iterations:
            if not _iteration_complete(item):
                continue
            try:
                records.append(IterationRecord.model_validate(item))
            except ValidationError:
                continue
        records.sort(key=lambda r: r.loop)
        # Renumber so loop indices are 1..n again
        records = [r.model_copy(update={"loop": i}) for i, r in enumerate(records, start=1)]
        repaired["iterations"] = records
        repaired["current_loop"] = len(records)
        repaired["last_review"] = records[-1].review if records else None

        reason = raw.get("completion_reason")
        if isinstance(reason, str) and is_terminal_reason(reason):
            repaired["is_complete"] = True
            repaired["completion_reason"] = reason

        try:
            state = SessionState(**repaired)
        except ValidationError as e:
            raise SessionCorruptionError(
                f"Session {session_id} could not be recovered",
                context={"session_id": session_id, "corruption_type": corruption_type,
                         "errors": e.error_count()},
                component="state.session_manager",
            )
        state.metadata["recovered_from"] = corruption_type or "unknown"
        return state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def get_or_create(
        self,
        session_id: str,
        session_config: Optional[SessionConfig] = None,
        context_id: Optional[str] = None,
    ) -> SessionState:
        """
        Return the session, creating (and persisting) it on first use.

        A record that cannot be read or repaired is replaced by a fresh
        session; previous history is lost and the loss is logged.
        """
        with self._session_lock(session_id):
            try:
                state = self.load(session_id)
            except SessionError as e:
                self._logger.warning("Recreating session %s: %s", session_id, e.message)
                state = None

            if state is not None:
                return state

            now = self._clock()
            state = SessionState(
                id=session_id,
                context_id=context_id,
                config=session_config or SessionConfig(),
                created_at=now,
                updated_at=now,
            )
            self._persist(state)
            self._logger.info("Created session %s", session_id)
            return state

    def _require(self, session_id: str) -> SessionState:
        state = self.load(session_id)
        if state is None:
            raise SessionNotFoundError(
                f"Session {session_id} does not exist",
                context={"session_id": session_id},
                component="state.session_manager",
            )
        return state

    def append(
        self,
        session_id: str,
        candidate: str,
        review: Review,
        loop: Optional[int] = None,
        stagnation: Optional[StagnationVerdict] = None,
    ) -> SessionState:
        """
        Record one judged iteration.

        Parameters
        ----------
        session_id : str
            Existing session id.
        candidate : str
            Candidate text that was judged.
        review : Review
            The judge's review of the candidate.
        loop : int, optional
            Retry key. Defaults to current_loop + 1. A loop already recorded
            is treated as a retry and ignored.
        stagnation : StagnationVerdict, optional
            Detector verdict computed for the window ending at this iteration;
            stored with the iteration so one write covers the whole loop.

        Returns
        -------
        SessionState
            The persisted state (unchanged on an ignored retry).

        Raises
        ------
        SessionNotFoundError, SessionClosedError, SessionError
        """
        with self._session_lock(session_id):
            state = self._require(session_id)
            expected = state.current_loop + 1
            loop = expected if loop is None else loop

            if loop <= state.current_loop and state.iteration_for_loop(loop) is not None:
                self._logger.info("Session %s: loop %d already recorded, ignoring retry", session_id, loop)
                return state
            if state.is_complete:
                raise SessionClosedError(
                    f"Session {session_id} is complete ({state.completion_reason})",
                    context={"session_id": session_id, "loop": loop},
                    component="state.session_manager",
                )
            if loop != expected:
                raise SessionError(
                    f"Out-of-order loop {loop} for session {session_id}; expected {expected}",
                    context={"session_id": session_id, "loop": loop, "expected": expected},
                    component="state.session_manager",
                    recoverable=False,
                    recovery_strategy="skip",
                )

            now = self._clock()
            record = IterationRecord(loop=loop, candidate=candidate, review=review, timestamp=now)
            updated = state.model_copy(deep=True)
            updated.iterations.append(record)
            updated.current_loop = len(updated.iterations)
            updated.last_review = review
            updated.updated_at = now
            if stagnation is not None:
                updated.stagnation = stagnation

            self._persist(updated)
            self._logger.info(
                "Session %s: recorded loop %d (score %.1f, verdict %s)",
                session_id, loop, review.overall, review.verdict,
            )
            return updated

    def mark_complete(self, session_id: str, reason: str) -> SessionState:
        """
        Close the session with a terminal completion reason.

        Marking an already complete session again is a no-op.
        """
        if not is_terminal_reason(reason):
            raise ValueError(f"Not a terminal completion reason: {reason}")

        with self._session_lock(session_id):
            state = self._require(session_id)
            if state.is_complete:
                if state.completion_reason != reason:
                    self._logger.warning(
                        "Session %s already complete (%s); ignoring %s",
                        session_id, state.completion_reason, reason,
                    )
                return state

            updated = state.model_copy(deep=True)
            updated.is_complete = True
            updated.completion_reason = reason
            updated.updated_at = self._clock()
            self._persist(updated)
            self._logger.info("Session %s complete: %s", session_id, reason)
            return updated

    def update_config(self, session_id: str, session_config: SessionConfig) -> SessionState:
        """Explicitly replace the configuration of an open session."""
        with self._session_lock(session_id):
            state = self._require(session_id)
            if state.is_complete:
                raise SessionClosedError(
                    f"Session {session_id} is complete; configuration is frozen",
                    context={"session_id": session_id},
                    component="state.session_manager",
                )
            if state.config == session_config:
                return state
            updated = state.model_copy(deep=True)
            updated.config = session_config
            updated.updated_at = self._clock()
            self._persist(updated)
            return updated

    def update_metadata(self, session_id: str, **fields: Any) -> SessionState:
        """Merge metadata fields. Permitted on complete sessions."""
        with self._session_lock(session_id):
            state = self._require(session_id)
            updated = state.model_copy(deep=True)
            updated.metadata.update(fields)
            updated.updated_at = self._clock()
            self._persist(updated)
            return updated

    def list_sessions(self) -> List[str]:
        return self._store.list_ids()
