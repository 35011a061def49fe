"""
Client access layer: talks to the practice server and falls back to the local cache.

Every operation is tried against the server first. When the call fails
(timeout, connection error, non-2xx response) the same operation is run
against the LocalCache so the user still sees the effect. In static mode,
for deployments without a server, the cache is used directly.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import weakref
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

import httpx

import scalelog.config as config
from scalelog.exercise import ExerciseKey, today
from scalelog.local_cache import LocalCache

logger = logging.getLogger(__name__)


class RequestFailed(Exception):
    """A server request timed out, could not be sent, or returned a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RequestCancelled(Exception):
    """A request was cancelled by a newer one of the same type or by teardown."""

    def __init__(self, request_type: str):
        super().__init__(f"{request_type} was cancelled")
        self.request_type = request_type


class InFlightRequests:
    """
    Registry of running requests keyed by logical request type.

    A read of a given type replaces any read of the same type still in
    flight. Writes get a unique key so they are never superseded, but
    cancel_all() still reaches them.
    """

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}
        self._cancelled: 'weakref.WeakSet[asyncio.Task]' = weakref.WeakSet()
        self._sequence = itertools.count(1)

    def __contains__(self, request_type: str) -> bool:
        return request_type in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    async def run(self, request_type: str, factory: Callable[[], Awaitable[Any]],
                  timeout: float, supersede: bool = True) -> Any:
        """
        Run a request, bounded by timeout.

        Raises:
            RequestFailed: If the request took longer than timeout
            RequestCancelled: If cancel() or cancel_all() stopped it
        """
        if supersede:
            self.cancel(request_type)
            key = request_type
        else:
            key = f'{request_type}#{next(self._sequence)}'

        task = asyncio.ensure_future(factory())
        self._tasks[key] = task
        try:
            return await asyncio.wait_for(task, timeout)
        except asyncio.TimeoutError:
            raise RequestFailed(f"{request_type} timed out after {timeout:g}s") from None
        except asyncio.CancelledError:
            if task in self._cancelled:
                logger.info("Request cancelled for %s", request_type)
                raise RequestCancelled(request_type) from None
            raise
        finally:
            if self._tasks.get(key) is task:
                del self._tasks[key]

    def cancel(self, request_type: str) -> bool:
        """Cancel the in-flight request registered under request_type, if any."""
        task = self._tasks.pop(request_type, None)
        if task is None:
            return False
        self._cancelled.add(task)
        task.cancel()
        return True

    def cancel_all(self) -> int:
        """Cancel every in-flight request; returns how many were cancelled."""
        return sum(self.cancel(key) for key in list(self._tasks))


class PracticeClient:
    """
    Same operations as the server-side stores, routed over HTTP with local fallback.

    Reads superseded by a newer read of the same type raise RequestCancelled.
    Writes are never lost to a failed or cancelled request: they land in the
    local cache instead, and migrate_local_data() uploads them later.
    """

    def __init__(self, base_url: str = config.SERVER_URL, cache: Optional[LocalCache] = None,
                 static_mode: bool = False, timeout: float = config.REQUEST_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            base_url: Practice server URL
            cache: Local cache used for fallback (defaults to config.LOCAL_CACHE_PATH)
            static_mode: Skip the server entirely, for deployments without one
            timeout: Maximum lifetime of a request in seconds
            transport: Optional httpx transport, mainly for tests
        """
        self.cache = cache if cache is not None else LocalCache()
        self.static_mode = static_mode
        self.timeout = timeout
        self.requests = InFlightRequests()
        self.http = httpx.AsyncClient(base_url=base_url, transport=transport,
                                      timeout=httpx.Timeout(timeout))

    async def __aenter__(self) -> 'PracticeClient':
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        """Cancel outstanding requests and close the HTTP client."""
        cancelled = self.requests.cancel_all()
        if cancelled:
            logger.info("Cancelled %d outstanding request(s)", cancelled)
        await self.http.aclose()

    def cancel_request(self, request_type: str) -> bool:
        return self.requests.cancel(request_type)

    def cancel_all_requests(self) -> int:
        return self.requests.cancel_all()

    async def _fetch(self, request_type: str, method: str, path: str, *,
                     params: Optional[Dict[str, Any]] = None, json: Any = None,
                     supersede: bool = True) -> Any:
        """
        Send one request through the in-flight registry.

        Raises:
            RequestFailed: On timeout, transport error, non-2xx status or a non-JSON body
            RequestCancelled: If the request was cancelled
        """
        async def send():
            try:
                response = await self.http.request(method, path, params=params, json=json)
            except httpx.HTTPError as e:
                raise RequestFailed(f"{request_type}: {e.__class__.__name__}: {e}") from e
            if not response.is_success:
                logger.error("Request failed for %s: %s %s", request_type,
                             response.status_code, response.text)
                raise RequestFailed(f"{request_type}: HTTP {response.status_code}",
                                    status_code=response.status_code)
            try:
                return response.json()
            except ValueError as e:
                raise RequestFailed(f"{request_type}: invalid JSON response") from e

        return await self.requests.run(request_type, send, self.timeout, supersede=supersede)

    async def _with_fallback(self, request_type: str, remote: Callable[[], Awaitable[Any]],
                             local: Callable[[], Any], write: bool = False,
                             expected: Optional[Dict[int, Any]] = None) -> Any:
        """
        Run remote(), or local() if the server could not serve the request.

        expected maps status codes that are answers rather than failures
        (e.g. 409 for a duplicate scale) to the value returned for them.
        """
        if self.static_mode:
            return local()
        try:
            return await remote()
        except RequestFailed as e:
            if expected and e.status_code in expected:
                return expected[e.status_code]
            logger.warning("%s failed (%s), falling back to local cache", request_type, e)
        except RequestCancelled:
            if not write:
                raise
            logger.warning("%s was cancelled, saving to local cache instead", request_type)
        return local()

    def _read(self, request_type: str, path: str, params: Dict[str, Any], local: Callable[[], Any],
              convert: Callable[[Any], Any] = lambda body: body):
        async def remote():
            return convert(await self._fetch(request_type, 'GET', path, params=params))
        return self._with_fallback(request_type, remote, local)

    def _write(self, request_type: str, path: str, body: Dict[str, Any], local: Callable[[], Any],
               convert: Callable[[Any], Any] = lambda body: body,
               expected: Optional[Dict[int, Any]] = None):
        async def remote():
            return convert(await self._fetch(request_type, 'POST', path, json=body, supersede=False))
        return self._with_fallback(request_type, remote, local, write=True, expected=expected)

    # Sessions

    async def save_session(self, session: Dict[str, Any]) -> Optional[Dict]:
        """Append a session without replacing earlier ones for the same exercise."""
        return await self._write('saveSession', '/api/sessions', {'action': 'save', 'session': session},
                                 lambda: self.cache.sessions.insert(session))

    async def save_unique_session(self, session: Dict[str, Any]) -> Optional[Dict]:
        """Store a session as the only one for its exercise."""
        return await self._write('saveUniqueSession', '/api/sessions',
                                 {'action': 'saveUnique', 'session': session},
                                 lambda: self.cache.sessions.insert_unique(session))

    async def recent_sessions(self, limit: int = config.RECENT_SESSIONS_LIMIT) -> List[Dict]:
        return await self._read('getRecentSessions', '/api/sessions', {'action': 'recent', 'limit': limit},
                                lambda: self.cache.sessions.recent(limit))

    async def view_all_sessions(self) -> List[Dict]:
        return await self.recent_sessions(config.VIEW_ALL_SESSIONS_LIMIT)

    async def all_sessions(self) -> List[Dict]:
        return await self._read('getAllSessions', '/api/sessions', {'action': 'all'},
                                self.cache.sessions.all)

    async def sessions_for_scale(self, scale: str) -> List[Dict]:
        return await self._read('getSessionsForScale', '/api/sessions', {'action': 'forScale', 'scale': scale},
                                lambda: self.cache.sessions.for_scale(scale))

    async def last_sessions_for_scale(self, scale: str, limit: int = config.LAST_FOR_SCALE_LIMIT) -> List[Dict]:
        return await self._read('getLastSessionsForScale', '/api/sessions',
                                {'action': 'lastForScale', 'scale': scale, 'limit': limit},
                                lambda: self.cache.sessions.last_for_scale(scale, limit))

    async def practice_stats(self) -> Dict[str, Any]:
        on_date = today()
        return await self._read('getPracticeStats', '/api/sessions', {'action': 'stats', 'date': on_date},
                                lambda: self.cache.sessions.stats(on_date))

    async def best_bpm(self, key: ExerciseKey) -> Optional[int]:
        return await self._read('getBestBPM', '/api/sessions/exercise', {'action': 'bestBPM', **key.to_params()},
                                lambda: self.cache.sessions.best_bpm(key),
                                convert=lambda body: body['best_bpm'])

    async def has_been_practiced(self, scale: str, practice_type: str) -> bool:
        return await self._read('hasBeenPracticed', '/api/sessions/exercise',
                                {'action': 'hasBeenPracticed', 'scale': scale, 'practice_type': practice_type},
                                lambda: self.cache.sessions.has_been_practiced(scale, practice_type),
                                convert=lambda body: bool(body['practiced']))

    async def practiced_types_for_scale(self, scale: str) -> Set[str]:
        return await self._read('getPracticedForScale', '/api/sessions/exercise',
                                {'action': 'practicedForScale', 'scale': scale},
                                lambda: self.cache.sessions.practiced_types_for_scale(scale),
                                convert=lambda body: set(body['practice_types']))

    async def clear_sessions(self) -> bool:
        return await self._write('clearSessions', '/api/sessions', {'action': 'clear'},
                                 self.cache.sessions.clear_all, convert=lambda body: True)

    # Daily practice

    async def get_daily_practice(self, date: Optional[str] = None) -> Optional[Dict]:
        """Daily record for a date, defaulting to today on this machine's calendar."""
        target_date = date or today()
        return await self._read('getDailyPractice', '/api/daily-practice', {'date': target_date},
                                lambda: self.cache.ledger.get(target_date))

    async def save_daily_practice(self, record: Dict[str, Any]) -> bool:
        return await self._write('saveDailyPractice', '/api/daily-practice',
                                 {'action': 'save', 'practice_data': record},
                                 lambda: self.cache.ledger.save(record),
                                 convert=lambda body: bool(body.get('success')))

    async def clear_daily_practice(self) -> bool:
        return await self._write('clearDailyPractice', '/api/daily-practice', {'action': 'clear'},
                                 self.cache.ledger.clear_all, convert=lambda body: True)

    # Scale collection

    async def get_collection(self) -> List[Dict]:
        return await self._read('getCollection', '/api/scales', {'action': 'getCollection'},
                                self.cache.collection.list)

    async def add_scale(self, scale: Dict[str, Any]) -> Optional[Dict]:
        """
        Add a scale to the collection.

        Returns:
            The created entry, or None if the scale is already collected
        """
        return await self._write('addScale', '/api/scales', {'action': 'addScale', 'scale': scale},
                                 lambda: self.cache.collection.add(scale), expected={409: None})

    async def add_scales(self, scales: Iterable[Dict[str, Any]]) -> Dict[str, List]:
        scales = list(scales)
        return await self._write('addScales', '/api/scales', {'action': 'addScales', 'scales': scales},
                                 lambda: self.cache.collection.add_many(scales))

    async def remove_scale(self, scale_id: int) -> bool:
        return await self._write('removeScale', '/api/scales', {'action': 'removeScale', 'scale_id': scale_id},
                                 lambda: self.cache.collection.remove(scale_id), convert=lambda body: True,
                                 expected={404: False})

    async def initialize_default_scales(self) -> List[Dict]:
        return await self._write('initializeDefaults', '/api/scales', {'action': 'initializeDefaults'},
                                 self.cache.collection.seed_defaults)

    async def reset_to_defaults(self) -> List[Dict]:
        return await self._write('resetToDefaults', '/api/scales', {'action': 'resetToDefaults'},
                                 self.cache.collection.reset_to_defaults)

    async def clear_scales(self) -> bool:
        return await self._write('clearScales', '/api/scales', {'action': 'clearAll'},
                                 self.cache.collection.clear_all, convert=lambda body: True)

    # Whole database

    async def clear_database(self) -> Dict[str, Any]:
        """
        Clear everything and reseed the default scales.

        Unlike other writes this does not silently fall back: if the server
        cannot be cleared the error is raised so the user can be told.
        The local cache is cleared as well so it cannot bring old data back.

        Raises:
            RequestFailed: If the server could not be cleared
            RequestCancelled: If the request was cancelled
        """
        if self.static_mode:
            self.cache.clear_all()
            return {'success': True, 'default_scales': self.cache.collection.seed_defaults()}

        result = await self._fetch('clearDatabase', 'POST', '/api/database', json={'action': 'clearAll'},
                                   supersede=False)
        self.cache.clear_all()
        return result

    async def migrate_local_data(self) -> Optional[Dict[str, Any]]:
        """
        Upload sessions, daily totals and scales recorded while offline.

        Sessions go through the server's plain insert path. The local cache
        is cleared only after the server accepted everything.

        Returns:
            The server's migration summary, or None if there was nothing to
            upload or the server could not be reached
        """
        if self.static_mode:
            return None

        snapshot = self.cache.snapshot()
        sessions = sorted(snapshot['sessions'], key=lambda s: s['id'])
        daily = self.cache.ledger.records()
        scales = snapshot['scales']
        if not (sessions or daily or scales):
            return None

        try:
            result = await self._fetch('migrate', 'POST', '/api/migrate',
                                       json={'sessions': sessions, 'daily_practice': daily},
                                       supersede=False)
            if scales:
                await self._fetch('addScales', 'POST', '/api/scales',
                                  json={'action': 'addScales', 'scales': scales}, supersede=False)
        except (RequestFailed, RequestCancelled) as e:
            logger.warning("Could not migrate local data, keeping it cached: %s", e)
            return None

        self.cache.clear_all()
        logger.info("Migrated local data: %s", result.get('message'))
        return result

    async def watch_recent_sessions(self, on_update: Callable[[List[Dict]], Any],
                                    interval: float = config.POLL_INTERVAL,
                                    limit: int = config.RECENT_SESSIONS_LIMIT):
        """Refresh recent sessions every interval seconds until cancelled."""
        while True:
            try:
                on_update(await self.recent_sessions(limit))
            except RequestCancelled:
                # A user-triggered refresh took over this round
                pass
            await asyncio.sleep(interval)
