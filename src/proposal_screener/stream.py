from __future__ import annotations

from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from enum import Enum
import json
import threading
from typing import Callable, Protocol

from websockets.exceptions import ConnectionClosed
from websockets.sync.client import connect as ws_connect

from proposal_screener.adapters.base import ProposalFetcher
from proposal_screener.domain.errors import ProposalNotFoundError, ProviderError, StreamConnectionError
from proposal_screener.domain.events import EventKind, LedgerEvent, extract_event, parse_event_batch
from proposal_screener.domain.models import Proposal, utc_now_iso
from proposal_screener.observability import get_logger, set_proposal_context
from proposal_screener.service import ScreeningService

_log = get_logger('proposal_screener.stream')

DEFAULT_RECONNECT_BASE_SECONDS = 1.0
DEFAULT_RECONNECT_CAP_SECONDS = 30.0
DEFAULT_RECONNECT_MAX_ATTEMPTS = 5


class StreamConnection(Protocol):
    def send(self, message: str) -> None:
        ...

    def recv(self) -> str | bytes:
        """Block for the next frame; raise StreamConnectionError once the peer closes."""
        ...

    def close(self) -> None:
        ...


class StreamTransport(Protocol):
    def connect(self, url: str) -> StreamConnection:
        ...


class _WebsocketConnection:
    def __init__(self, connection):
        self._connection = connection

    def send(self, message: str) -> None:
        self._connection.send(message)

    def recv(self) -> str | bytes:
        try:
            return self._connection.recv()
        except ConnectionClosed as exc:
            raise StreamConnectionError(f'stream closed code={exc.rcvd.code if exc.rcvd else "none"}') from exc

    def close(self) -> None:
        self._connection.close()


class WebsocketTransport:
    def __init__(self, *, open_timeout_seconds: float = 10.0):
        self.open_timeout_seconds = float(open_timeout_seconds)

    def connect(self, url: str) -> StreamConnection:
        return _WebsocketConnection(ws_connect(url, open_timeout=self.open_timeout_seconds))


class KeyedSerialExecutor:
    """Thread pool that runs jobs for one key in submission order.

    Jobs for different keys run in parallel.
    """

    def __init__(self, *, max_workers: int = 4):
        self._pool = ThreadPoolExecutor(max_workers=max(1, int(max_workers)), thread_name_prefix='screener-dispatch')
        self._queues: dict[str, deque[Callable[[], None]]] = {}
        self._lock = threading.Lock()

    def submit(self, key: str, job: Callable[[], None]) -> None:
        with self._lock:
            queue = self._queues.get(key)
            if queue is not None:
                queue.append(job)
                return
            self._queues[key] = deque([job])
        self._pool.submit(self._drain, key)

    def _drain(self, key: str) -> None:
        while True:
            with self._lock:
                queue = self._queues.get(key)
                if not queue:
                    self._queues.pop(key, None)
                    return
                job = queue.popleft()
            try:
                job()
            except Exception:
                _log.exception('dispatch_job_failed key=%s', key)

    def shutdown(self, *, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)


class ListenerState(str, Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'


@dataclass(frozen=True)
class ReconnectPolicy:
    base_seconds: float = DEFAULT_RECONNECT_BASE_SECONDS
    cap_seconds: float = DEFAULT_RECONNECT_CAP_SECONDS
    max_attempts: int = DEFAULT_RECONNECT_MAX_ATTEMPTS

    def delay_for(self, attempt: int) -> float:
        return min(self.base_seconds * (2 ** max(0, int(attempt))), self.cap_seconds)


@dataclass(frozen=True)
class ReconnectState:
    state: ListenerState
    attempt_count: int
    max_attempts: int
    exhausted: bool
    last_error: str | None

    @property
    def connected(self) -> bool:
        return self.state is ListenerState.CONNECTED

    @property
    def connecting(self) -> bool:
        return self.state is ListenerState.CONNECTING


def _start_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


def _start_thread(target: Callable[[], None]) -> None:
    threading.Thread(target=target, name='screener-stream', daemon=True).start()


class EventStreamListener:
    """Subscription to the ledger's proposal events with exponential reconnect.

    States move Disconnected -> Connecting -> Connected and back to
    Disconnected on close or error. Event handling runs on the dispatcher so
    a slow judgment call never stalls frame reads.
    """

    def __init__(
        self,
        *,
        service: ScreeningService,
        contract_id: str,
        url: str,
        event_standard: str = 'venear',
        transport: StreamTransport | None = None,
        fetcher: ProposalFetcher | None = None,
        policy: ReconnectPolicy | None = None,
        dispatcher: KeyedSerialExecutor | None = None,
        scheduler: Callable[[float, Callable[[], None]], object] | None = None,
        spawn: Callable[[Callable[[], None]], object] | None = None,
    ):
        self.service = service
        self.contract_id = contract_id
        self.url = url
        self.event_standard = event_standard
        self.transport = transport or WebsocketTransport()
        self.fetcher = fetcher
        self.policy = policy or ReconnectPolicy()
        self.dispatcher = dispatcher or KeyedSerialExecutor()
        self._scheduler = scheduler or _start_timer
        self._spawn = spawn or _start_thread
        self._lock = threading.RLock()
        self._state = ListenerState.DISCONNECTED
        self._attempts = 0
        self._exhausted = False
        self._stopped = False
        self._last_error: str | None = None
        self._connection: StreamConnection | None = None
        self._pending_reconnect: object | None = None
        self._generation = 0
        self.events_received = 0
        self.last_event_at: str | None = None

    def subscription_filter(self) -> dict:
        return {
            'And': [
                {'path': 'event_standard', 'operator': {'Equals': self.event_standard}},
                {'path': 'account_id', 'operator': {'Equals': self.contract_id}},
            ]
        }

    def status(self) -> ReconnectState:
        with self._lock:
            return ReconnectState(
                state=self._state,
                attempt_count=self._attempts,
                max_attempts=self.policy.max_attempts,
                exhausted=self._exhausted,
                last_error=self._last_error,
            )

    def start(self) -> bool:
        """Open the subscription unless one is already opening or open.

        Returns True when a connection attempt was started.
        """
        with self._lock:
            if self._state is not ListenerState.DISCONNECTED:
                return False
            self._stopped = False
            self._pending_reconnect = None
            if self._exhausted:
                self._attempts = 0
                self._exhausted = False
            self._state = ListenerState.CONNECTING
            self._generation += 1
            generation = self._generation
            attempt = self._attempts
        _log.info('stream_connecting url=%s contract=%s attempt=%d', self.url, self.contract_id, attempt)
        self._spawn(lambda: self._run(generation))
        return True

    def stop(self) -> None:
        """Close the connection and drop any scheduled reconnect."""
        with self._lock:
            self._stopped = True
            self._generation += 1
            pending = self._pending_reconnect
            self._pending_reconnect = None
            connection = self._connection
            self._connection = None
            self._state = ListenerState.DISCONNECTED
        cancel = getattr(pending, 'cancel', None)
        if callable(cancel):
            cancel()
        if connection is not None:
            self._close_quietly(connection)
        _log.info('stream_stopped contract=%s', self.contract_id)

    def shutdown(self) -> None:
        self.stop()
        self.dispatcher.shutdown(wait=False)

    def _run(self, generation: int) -> None:
        try:
            connection = self.transport.connect(self.url)
        except Exception as exc:
            _log.warning('stream_connect_failed url=%s error=%s', self.url, exc)
            self.handle_close(error=exc, generation=generation)
            return

        error: Exception | None = None
        try:
            if not self.handle_open(connection, generation=generation):
                self._close_quietly(connection)
                return
            while True:
                self.handle_message(connection.recv())
        except StreamConnectionError as exc:
            _log.info('stream_closed contract=%s reason=%s', self.contract_id, exc)
        except Exception as exc:
            _log.warning('stream_error contract=%s error=%s', self.contract_id, exc)
            error = exc
        self._close_quietly(connection)
        self.handle_close(error=error, generation=generation)

    def _is_stale(self, generation: int | None) -> bool:
        return generation is not None and generation != self._generation

    def handle_open(self, connection: StreamConnection, *, generation: int | None = None) -> bool:
        with self._lock:
            if self._stopped or self._is_stale(generation):
                return False
            self._connection = connection
        connection.send(json.dumps(self.subscription_filter()))
        with self._lock:
            self._state = ListenerState.CONNECTED
            self._attempts = 0
            self._exhausted = False
            self._last_error = None
        _log.info('stream_connected contract=%s standard=%s', self.contract_id, self.event_standard)
        return True

    def handle_close(self, *, error: BaseException | None = None, generation: int | None = None) -> None:
        with self._lock:
            if self._is_stale(generation):
                return
            self._connection = None
            self._state = ListenerState.DISCONNECTED
            if error is not None:
                self._last_error = str(error) or error.__class__.__name__
            if self._stopped:
                return
            if self._attempts >= self.policy.max_attempts:
                self._exhausted = True
                _log.error('stream_reconnect_exhausted contract=%s attempts=%d', self.contract_id, self._attempts)
                return
            delay = self.policy.delay_for(self._attempts)
            self._attempts += 1
            attempt = self._attempts
        _log.info('stream_reconnect_scheduled attempt=%d/%d delay=%.2fs', attempt, self.policy.max_attempts, delay)
        handle = self._scheduler(delay, self._reconnect)
        with self._lock:
            if self._stopped:
                cancel = getattr(handle, 'cancel', None)
                if callable(cancel):
                    cancel()
                return
            self._pending_reconnect = handle

    def _reconnect(self) -> None:
        with self._lock:
            if self._stopped:
                return
        self.start()

    @staticmethod
    def _close_quietly(connection: StreamConnection) -> None:
        try:
            connection.close()
        except Exception:
            _log.debug('stream_close_failed', exc_info=True)

    def handle_message(self, raw: str | bytes) -> int:
        """Route one frame; returns the number of events dispatched."""
        events = parse_event_batch(raw)
        if not events:
            _log.debug('stream_frame_ignored size=%d', len(raw or ''))
            return 0
        dispatched = 0
        for item in events:
            event = extract_event(item)
            if event is None:
                continue
            if event.account_id and event.account_id != self.contract_id:
                continue
            kind = event.kind
            if kind is EventKind.OTHER:
                _log.debug('stream_event_ignored proposal_id=%s type=%s', event.proposal_id, event.event_type)
                continue
            with self._lock:
                self.events_received += 1
                self.last_event_at = utc_now_iso()
            _log.info('stream_event proposal_id=%s type=%s', event.proposal_id, event.event_type)
            if kind is EventKind.CREATED:
                self.dispatcher.submit(event.proposal_id, lambda e=event: self._handle_created(e))
            else:
                self.dispatcher.submit(event.proposal_id, lambda e=event: self._handle_approved(e))
            dispatched += 1
        return dispatched

    def _resolve_proposal(self, event: LedgerEvent) -> Proposal:
        proposal = Proposal.from_payload(event.proposal_id, event.details)
        if proposal.is_incomplete and self.fetcher is not None:
            try:
                proposal = proposal.filled_from(self.fetcher.fetch(event.proposal_id))
            except (ProviderError, ProposalNotFoundError) as exc:
                _log.warning('proposal_fetch_failed proposal_id=%s error=%s', event.proposal_id, exc)
            except Exception:
                _log.exception('proposal_fetch_crashed proposal_id=%s', event.proposal_id)
        if not proposal.title:
            proposal = replace(proposal, title=f'Proposal #{event.proposal_id}')
        return proposal

    def _handle_created(self, event: LedgerEvent) -> None:
        set_proposal_context(proposal_id=event.proposal_id, source='stream')
        self.service.screen_and_maybe_execute(event.proposal_id, self._resolve_proposal(event), source='stream')

    def _handle_approved(self, event: LedgerEvent) -> None:
        set_proposal_context(proposal_id=event.proposal_id, source='stream')
        existing = self.service.get_result(event.proposal_id)
        if existing is not None:
            _log.info(
                'proposal_approved_for_voting proposal_id=%s screened_approved=%s reasons=%s',
                event.proposal_id,
                existing.approved,
                ' | '.join(existing.reasons),
            )
            return
        _log.info('proposal_approved_unscreened proposal_id=%s', event.proposal_id)
        self.service.screen_and_maybe_execute(event.proposal_id, self._resolve_proposal(event), source='stream')
