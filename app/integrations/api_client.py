"""
Checklist Platform REST client.

Thin requests-based client used by the checklist wizard driver and by
scripts that talk to a running backend.

  - Bearer token injected on every call (set by login() or a token provider)
  - GET results cached in a QueryCache keyed by (path, sorted params)
  - Successful mutations invalidate cache entries by path prefix
  - No retry/backoff: every failure surfaces to the triggering call

Testability: pass a mock `session` to ApiClient() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

import requests

from app.services.form_composer import ChecklistSchema, RequestContext

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30

# Paths whose cached results go stale after a response is submitted
RESPONSE_PREFIXES = ("/api/responses", "/api/dashboard")


# ═══════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════
class ApiError(Exception):
    """Base class for client-side API failures."""

    def __init__(self, message: str, status_code: int | None = None, details: dict | None = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class TransportError(ApiError):
    """Network failure or a non-2xx response without a more specific type."""


class ApiNotFoundError(ApiError):
    """404 from the backend (missing or cross-tenant resource)."""


class ApiValidationError(ApiError):
    """422 from the backend; ``details`` maps field keys to problems."""


# ═══════════════════════════════════════════════════════════════
# Query cache
# ═══════════════════════════════════════════════════════════════
class QueryCache:
    """In-memory GET cache shared by background loads and the caller thread.

    Every invalidate() or clear() bumps ``generation``. A fetch records the
    generation before its request and passes it to set(), so a result that
    was in flight across an invalidation is dropped instead of cached.
    """

    def __init__(self) -> None:
        self._entries: dict[tuple, Any] = {}
        self._lock = threading.Lock()
        self._generation = 0

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @staticmethod
    def key(path: str, params: dict | None = None) -> tuple:
        items = sorted((str(k), str(v)) for k, v in (params or {}).items() if v is not None)
        return (path, tuple(items))

    def get(self, path: str, params: dict | None = None) -> tuple[bool, Any]:
        """Return (hit, value)."""
        k = self.key(path, params)
        with self._lock:
            if k in self._entries:
                return True, self._entries[k]
        return False, None

    def set(self, path: str, params: dict | None, value: Any, *, generation: int | None = None) -> bool:
        """Store ``value``; refused when ``generation`` is no longer current."""
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._entries[self.key(path, params)] = value
        return True

    def invalidate(self, *prefixes: str) -> int:
        """Drop every entry whose path starts with one of the prefixes."""
        with self._lock:
            self._generation += 1
            stale = [k for k in self._entries if k[0].startswith(prefixes)]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.debug("Invalidated %d cached queries for %s", len(stale), prefixes)
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ═══════════════════════════════════════════════════════════════
# Client
# ═══════════════════════════════════════════════════════════════
class ApiClient:
    """REST client for one backend base URL.

    Usage:
        client = ApiClient("http://localhost:5000")
        client.login("admin@demo.local", "secret", "demo")
        schema = client.get_schema(3)
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        token_provider: Callable[[], str | None] | None = None,
        session: requests.Session | None = None,
        cache: QueryCache | None = None,
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._token_provider = token_provider
        # Inject custom session for testing; create real one lazily otherwise.
        self._session = session
        self.cache = cache if cache is not None else QueryCache()
        self.timeout = timeout
        self.user: dict | None = None

    # ── HTTP session ─────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _headers(self) -> dict:
        token = self._token_provider() if self._token_provider else self._token
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    # ── Core request ─────────────────────────────────────────────────────

    def request(self, method: str, path: str, *, params: dict | None = None, json: Any = None) -> Any:
        """Perform one call and return the decoded JSON body.

        Raises:
            ApiNotFoundError: 404.
            ApiValidationError: 422.
            TransportError: network failure or any other non-2xx status.
        """
        url = f"{self.base_url}{path}"
        start = time.monotonic()
        try:
            resp = self.session.request(
                method, url, params=params, json=json, headers=self._headers(), timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise TransportError(f"Request failed: {e}") from e

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.debug("%s %s -> %s (%dms)", method, path, resp.status_code, duration_ms)

        body = self._decode(resp)
        if resp.status_code < 400:
            return body

        message = body.get("error") if isinstance(body, dict) else None
        message = message or f"HTTP {resp.status_code}"
        details = body.get("details") if isinstance(body, dict) else None
        if resp.status_code == 404:
            raise ApiNotFoundError(message, 404)
        if resp.status_code == 422:
            raise ApiValidationError(message, 422, details)
        raise TransportError(message, resp.status_code, details)

    @staticmethod
    def _decode(resp) -> Any:
        if resp.status_code == 204:
            return None
        try:
            return resp.json()
        except ValueError:
            return None

    def get(self, path: str, params: dict | None = None, *, use_cache: bool = True) -> Any:
        if use_cache:
            hit, value = self.cache.get(path, params)
            if hit:
                return value
        generation = self.cache.generation
        value = self.request("GET", path, params=params)
        if use_cache and not self.cache.set(path, params, value, generation=generation):
            logger.debug("Discarded %s result fetched across an invalidation", path)
        return value

    # ── Auth ─────────────────────────────────────────────────────────────

    def login(self, email: str, password: str, tenant_slug: str) -> dict:
        body = self.request("POST", "/api/auth/login", json={
            "email": email, "password": password, "tenant_slug": tenant_slug,
        })
        self._token = body["access_token"]
        self.user = body.get("user")
        self.cache.clear()
        logger.info("Logged in as user=%s tenant=%s", (self.user or {}).get("id"), tenant_slug)
        return body

    def context(self, locale: str = "sv-SE") -> RequestContext:
        """RequestContext for the logged-in user."""
        if not self.user:
            raise TransportError("Not logged in")
        return RequestContext(
            tenant_id=int(self.user["tenant_id"]),
            user_id=self.user.get("id"),
            roles=(self.user.get("role") or "user",),
            user_name=self.user.get("full_name") or "",
            locale=locale,
        )

    # ── Checklists ───────────────────────────────────────────────────────

    def list_active_checklists(self) -> list[dict]:
        return self.get("/api/checklists/active")

    def get_wizard(self, checklist_id: int, identification: dict | None = None) -> dict:
        return self.get(f"/api/checklists/{checklist_id}/wizard", identification)

    def get_schema(self, checklist_id: int) -> ChecklistSchema:
        return ChecklistSchema.from_dict(self.get_wizard(checklist_id)["schema"])

    def validate(self, checklist_id: int, identification: dict, answers: dict,
                 step_index: int | None = None) -> dict:
        body = {"identification": identification, "answers": answers}
        if step_index is not None:
            body["step_index"] = step_index
        return self.request("POST", f"/api/checklists/{checklist_id}/wizard/validate", json=body)

    # ── Responses ────────────────────────────────────────────────────────

    def submit_response(self, payload: dict) -> dict:
        created = self.request("POST", "/api/responses", json=payload)
        self.cache.invalidate(
            *RESPONSE_PREFIXES, f"/api/checklists/{payload.get('checklist_id')}/dashboard",
        )
        return created

    def list_responses(self, **filters) -> dict:
        return self.get("/api/responses", filters)

    def view_response(self, response_id: int) -> dict:
        return self.get(f"/api/responses/{response_id}/view")

    def get_dashboard(self, checklist_id: int) -> dict:
        return self.get(f"/api/checklists/{checklist_id}/dashboard")

    def get_dashboard_stats(self, checklist_id: int | None = None) -> dict:
        return self.get("/api/dashboard/stats", {"checklist_id": checklist_id})
