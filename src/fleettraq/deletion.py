"""Account deletion gated by a quorum of every registered device session.

Each device registers (or refreshes) one ``sessions`` record per account.
A deletion request is created by one device and approved by the others;
once every session carries ``approvedDeletion`` the account data and the
identity account are deleted. Any device observing the quorum may execute
the deletion. Deleting already-missing documents is a no-op and an
already-deleted identity account counts as success, so concurrent
executions converge on ``deleted``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict

from fleettraq._constants import DELETION_REQUESTS_COLLECTION, SESSIONS_COLLECTION
from fleettraq.config import FleetConfig
from fleettraq.exceptions import (
    FleetAccountGoneError,
    FleetAuthenticationError,
    FleetError,
    FleetPreconditionError,
    FleetReauthenticationRequiredError,
)
from fleettraq.identity.base import IdentityProvider
from fleettraq.models._base import format_iso_timestamp, utcnow
from fleettraq.models.deletion import AccountSession, DeletionRequest
from fleettraq.policy import approval_counts, deletion_executor, quorum_met
from fleettraq.records.base import (
    Document,
    FieldFilter,
    RecordStore,
    Subscription,
    first_snapshot,
    parse_documents,
)

_logger = logging.getLogger(__name__)

REAUTH_PROMPT = "Please enter your password to confirm account deletion."


class DeletionPhase(StrEnum):
    NO_REQUEST = "no_request"
    PENDING_APPROVALS = "pending_approvals"
    QUORUM_MET = "quorum_met"
    EXECUTING = "executing"
    DELETED = "deleted"
    REAUTH_REQUIRED = "reauth_required"
    FAILED = "failed"


_SETTLED = frozenset(
    {
        DeletionPhase.EXECUTING,
        DeletionPhase.DELETED,
        DeletionPhase.REAUTH_REQUIRED,
        DeletionPhase.FAILED,
    }
)


class DeletionView(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: DeletionPhase = DeletionPhase.NO_REQUEST
    request: DeletionRequest | None = None
    sessions: tuple[AccountSession, ...] = ()
    approved_count: int = 0
    required_count: int = 0
    busy: bool = False
    error: str | None = None


class DeletionCoordinator:
    """Per-device side of the deletion quorum protocol.

    Parameters
    ----------
    store : RecordStore
        Backing record store.
    identity : IdentityProvider
        Provider holding the signed-in account; ``delete_account`` is the
        final step of an execution.
    device_id : str
        This device's stable id.
    config : FleetConfig, optional
        Supplies the per-account collections purged on execution.
    clock : callable, optional
        Source of ``lastActive`` / ``initiatedAt`` timestamps.
    """

    def __init__(
        self,
        store: RecordStore,
        identity: IdentityProvider,
        device_id: str,
        *,
        config: FleetConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._identity = identity
        self._device_id = device_id
        self._config = config or FleetConfig()
        self._clock = clock
        self._listeners: list[Callable[[DeletionView], None]] = []
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[Any]] = set()

        self._account_id: str | None = None
        self._session_id: str | None = None
        self._sessions: tuple[AccountSession, ...] = ()
        self._request: DeletionRequest | None = None
        self._sessions_sub: Subscription | None = None
        self._requests_sub: Subscription | None = None

        self._phase = DeletionPhase.NO_REQUEST
        self._busy = False
        self._error: str | None = None

    async def __aenter__(self) -> DeletionCoordinator:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    @property
    def view(self) -> DeletionView:
        approved, required = approval_counts(self._sessions)
        return DeletionView(
            phase=self._phase,
            request=self._request,
            sessions=self._sessions,
            approved_count=approved,
            required_count=required,
            busy=self._busy,
            error=self._error,
        )

    @property
    def session_id(self) -> str | None:
        """Id of this device's session record once registered."""
        return self._session_id

    def add_listener(self, callback: Callable[[DeletionView], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def _remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(callback)

        return _remove

    def _changed(self) -> None:
        if not self._listeners:
            return
        view = self.view
        for callback in list(self._listeners):
            try:
                callback(view)
            except Exception:
                _logger.debug("Deletion listener failed", exc_info=True)

    def _fail(self, message: str) -> None:
        _logger.info("Deletion action failed: %s", message)
        self._error = message
        self._changed()

    def _set_phase(self, phase: DeletionPhase) -> None:
        if phase != self._phase:
            _logger.debug("Deletion phase %s -> %s (account=%s)", self._phase, phase, self._account_id)
            self._phase = phase

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Register this device's session and watch the account's quorum state.

        Returns ``False`` (with ``view.error`` set) when nobody is signed in
        or the session could not be registered.
        """
        if self._sessions_sub is not None:
            return True
        user = self._identity.current_user
        if user is None:
            self._fail("You must be signed in to manage account deletion.")
            return False
        self._account_id = user.id
        try:
            self._session_id = await self._register_session(user.id)
        except FleetError as exc:
            self._fail(f"Failed to register session: {exc}")
            return False

        account_filter = (FieldFilter("accountId", user.id),)
        self._sessions_sub = self._store.subscribe(
            SESSIONS_COLLECTION,
            filters=account_filter,
            on_snapshot=self._on_sessions_snapshot,
            on_error=lambda exc: self._fail(f"Failed to fetch sessions: {exc}"),
        )
        self._requests_sub = self._store.subscribe(
            DELETION_REQUESTS_COLLECTION,
            filters=account_filter,
            on_snapshot=self._on_requests_snapshot,
            on_error=lambda exc: self._fail(f"Failed to fetch deletion requests: {exc}"),
        )
        return True

    async def _register_session(self, account_id: str) -> str:
        documents = await first_snapshot(
            self._store,
            SESSIONS_COLLECTION,
            filters=(FieldFilter("accountId", account_id), FieldFilter("deviceId", self._device_id)),
        )
        existing = parse_documents(AccountSession, documents)
        now = self._clock()
        if existing:
            session = existing[0]
            await self._store.update(SESSIONS_COLLECTION, session.id, {"lastActive": format_iso_timestamp(now)})
            _logger.debug("Refreshed session %s for device %s", session.id, self._device_id)
            return session.id

        session = AccountSession(account_id=account_id, device_id=self._device_id, last_active=now)
        session_id = await self._store.create(SESSIONS_COLLECTION, session.to_document())
        _logger.debug("Registered session %s for device %s", session_id, self._device_id)
        return session_id

    async def close(self) -> None:
        """Stop watching sessions and requests. An in-flight execution is awaited."""
        self._close_subscriptions()
        tasks = list(self._tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _close_subscriptions(self) -> None:
        for sub in (self._sessions_sub, self._requests_sub):
            if sub is not None:
                sub.close()
        self._sessions_sub = None
        self._requests_sub = None

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _on_sessions_snapshot(self, documents: list[Document]) -> None:
        if self._phase == DeletionPhase.DELETED:
            return
        self._sessions = tuple(parse_documents(AccountSession, documents))
        _logger.debug("Sessions for account %s: %d", self._account_id, len(self._sessions))
        if self._phase == DeletionPhase.QUORUM_MET and not self._sessions:
            # The executing device purged the sessions.
            self._finish_deleted()
            return
        self._changed()
        if quorum_met(self._sessions) and self._phase not in _SETTLED:
            self._schedule_evaluation()

    def _schedule_evaluation(self) -> None:
        task = asyncio.get_running_loop().create_task(self.evaluate_quorum())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_requests_snapshot(self, documents: list[Document]) -> None:
        if self._phase == DeletionPhase.DELETED:
            return
        requests = parse_documents(DeletionRequest, documents)
        if len(requests) > 1:
            _logger.warning("Account %s has %d deletion requests; using the oldest", self._account_id, len(requests))
        self._request = min(requests, key=lambda r: r.initiated_at) if requests else None
        if self._phase == DeletionPhase.QUORUM_MET:
            if self._request is None:
                self._finish_deleted()
                return
            self._schedule_evaluation()
        if self._phase in (DeletionPhase.NO_REQUEST, DeletionPhase.PENDING_APPROVALS):
            self._set_phase(DeletionPhase.PENDING_APPROVALS if self._request else DeletionPhase.NO_REQUEST)
        self._changed()

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _require_session(self) -> tuple[str, str]:
        if self._identity.current_user is None or self._account_id is None:
            raise FleetAuthenticationError("You must be signed in to manage account deletion.")
        if self._session_id is None:
            raise FleetPreconditionError("No active session found for this device.")
        return self._account_id, self._session_id

    async def initiate_deletion(self) -> str | None:
        """Create the account's deletion request with this device's approval.

        Returns the request id, or ``None`` with ``view.error`` set.
        """
        try:
            account_id, session_id = self._require_session()
            if self._request is not None:
                raise FleetPreconditionError("A deletion request is already pending.")
        except FleetError as exc:
            self._fail(str(exc))
            return None

        self._busy = True
        self._error = None
        self._changed()
        try:
            request = DeletionRequest(
                account_id=account_id,
                initiated_by=self._device_id,
                initiated_at=self._clock(),
            ).with_approval(self._device_id)
            request_id = await self._store.create(DELETION_REQUESTS_COLLECTION, request.to_document())
            await self._store.update(SESSIONS_COLLECTION, session_id, {"approvedDeletion": True})
        except FleetError as exc:
            self._fail(f"Failed to initiate account deletion: {exc}")
            return None
        finally:
            self._busy = False

        self._request = request.model_copy(update={"id": request_id})
        if self._phase == DeletionPhase.NO_REQUEST:
            self._set_phase(DeletionPhase.PENDING_APPROVALS)
        _logger.debug("Initiated deletion request %s for account %s", request_id, account_id)
        self._changed()
        return request_id

    async def approve_deletion(self) -> bool:
        """Record this device's approval on the pending request and its session."""
        try:
            _, session_id = self._require_session()
            request = self._request
            if request is None:
                raise FleetPreconditionError("No pending deletion request to approve.")
        except FleetError as exc:
            self._fail(str(exc))
            return False

        self._busy = True
        self._error = None
        self._changed()
        updated = request.with_approval(self._device_id)
        try:
            approvals = updated.to_document()["approvals"]
            await self._store.update(DELETION_REQUESTS_COLLECTION, request.id, {"approvals": approvals})
            await self._store.update(SESSIONS_COLLECTION, session_id, {"approvedDeletion": True})
        except FleetError as exc:
            self._fail(f"Failed to approve account deletion: {exc}")
            return False
        finally:
            self._busy = False

        self._request = updated
        _logger.debug("Device %s approved deletion request %s", self._device_id, request.id)
        self._changed()
        return True

    async def evaluate_quorum(self) -> bool:
        """Execute the deletion if every registered session has approved.

        Only the device chosen by :func:`~fleettraq.policy.deletion_executor`
        runs the purge; the others wait in ``QUORUM_MET`` until the purge
        empties their sessions or requests view. Safe to call repeatedly:
        once an execution has started, further calls return ``False``
        without touching the store.
        """
        async with self._lock:
            if self._phase in _SETTLED or not quorum_met(self._sessions):
                return False
            self._set_phase(DeletionPhase.QUORUM_MET)
            self._changed()
            executor = deletion_executor(self._request, self._sessions)
            if executor != self._device_id:
                _logger.debug("Quorum met; waiting for device %s to execute", executor)
                return False
            await self._execute()
            return True

    async def provide_credential(self, password: str) -> bool:
        """Reauthenticate and resume a deletion halted for a fresh credential."""
        async with self._lock:
            if self._phase != DeletionPhase.REAUTH_REQUIRED:
                return False
            self._busy = True
            self._changed()
            try:
                await self._identity.reauthenticate(password)
            except FleetAccountGoneError:
                self._busy = False
                self._finish_deleted()
                return True
            except FleetError as exc:
                self._busy = False
                self._fail(f"Reauthentication failed: {exc}")
                return False
            await self._execute()
            return self._phase == DeletionPhase.DELETED

    async def retry(self) -> bool:
        """Re-run a failed execution."""
        async with self._lock:
            if self._phase != DeletionPhase.FAILED:
                return False
            await self._execute()
            return self._phase == DeletionPhase.DELETED

    async def _execute(self) -> None:
        account_id = self._account_id
        assert account_id is not None  # noqa: S101
        self._set_phase(DeletionPhase.EXECUTING)
        self._busy = True
        self._error = None
        self._changed()
        try:
            await self._purge_account_data(account_id)
            await self._identity.delete_account()
        except FleetReauthenticationRequiredError:
            self._busy = False
            self._set_phase(DeletionPhase.REAUTH_REQUIRED)
            self._fail(REAUTH_PROMPT)
            return
        except FleetAccountGoneError:
            _logger.info("Identity account for %s already deleted", account_id)
        except FleetError as exc:
            _logger.warning("Account deletion for %s failed: %s", account_id, exc)
            self._busy = False
            self._set_phase(DeletionPhase.FAILED)
            self._fail(f"Failed to delete account: {exc}")
            return
        self._busy = False
        self._finish_deleted()

    def _finish_deleted(self) -> None:
        self._set_phase(DeletionPhase.DELETED)
        self._error = None
        self._close_subscriptions()
        _logger.info("Account %s deleted", self._account_id)
        self._changed()

    async def _purge_account_data(self, account_id: str) -> None:
        account_filter = (FieldFilter("accountId", account_id),)
        for collection in self._config.account_collections:
            documents = await first_snapshot(self._store, collection, filters=account_filter)
            await asyncio.gather(*(self._store.delete(collection, doc.id) for doc in documents))
            _logger.debug("Purged %d documents from %s", len(documents), collection)
