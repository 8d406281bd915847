"""
Odoo JSON-RPC client.

- One requests.Session per client, fixed timeout per call
- uid from common.login cached for the client's lifetime
- Auth failures trigger one transparent re-login and retry
- Transport failures raise RemoteUnavailableError; JSON-RPC error members
  raise OdooRPCError with the remote message verbatim
"""
import random
from typing import Any, Dict, FrozenSet, List, Optional, Sequence

import requests

from pickbridge.core.settings import Settings, get_settings
from pickbridge.exceptions import (
    AuthExpiredError,
    ConfigurationError,
    OdooRPCError,
    RemoteUnavailableError,
)
from pickbridge.logging_config import get_logger

logger = get_logger(__name__)

# Exception names / messages Odoo uses when the credentials or session are rejected
AUTH_ERROR_SIGNATURES = (
    "accessdenied",
    "access denied",
    "sessionexpired",
    "session expired",
)


def _is_auth_error(exception_name: Optional[str], message: Optional[str]) -> bool:
    haystack = f"{exception_name or ''} {message or ''}".lower()
    return any(sig in haystack for sig in AUTH_ERROR_SIGNATURES)


class OdooClient:
    """Generic Odoo RPC wrapper with typed helpers."""

    def __init__(
        self,
        url: str,
        db: str,
        login: str,
        api_key: str,
        *,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = url.rstrip("/")
        self.endpoint = f"{self.base_url}/jsonrpc"
        self.db = db
        self.login_name = login
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self._uid: Optional[int] = None
        self._fields_cache: Dict[str, FrozenSet[str]] = {}

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "OdooClient":
        """Build a client from ODOO_* settings."""
        settings = settings or get_settings()
        missing = [
            name for name, value in (
                ("ODOO_URL", settings.ODOO_URL),
                ("ODOO_DB", settings.ODOO_DB),
                ("ODOO_LOGIN", settings.ODOO_LOGIN),
                ("ODOO_API_KEY", settings.ODOO_API_KEY),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Odoo connection settings missing: {', '.join(missing)}",
                missing=missing,
            )
        return cls(
            settings.ODOO_URL,
            settings.ODOO_DB,
            settings.ODOO_LOGIN,
            settings.ODOO_API_KEY,
            timeout=settings.ODOO_TIMEOUT_SECONDS,
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _post(
        self,
        service: str,
        method: str,
        args: List[Any],
        *,
        model: Optional[str] = None,
        model_method: Optional[str] = None,
    ) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": "call",
            "params": {"service": service, "method": method, "args": args},
            "id": random.randint(1, 1_000_000_000),
        }
        try:
            response = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
        except requests.Timeout as e:
            raise RemoteUnavailableError(
                f"timed out after {self.timeout:g}s", timeout=self.timeout
            ) from e
        except requests.RequestException as e:
            raise RemoteUnavailableError(f"unreachable ({e})") from e

        if response.status_code in (401, 403):
            raise AuthExpiredError(
                f"Odoo rejected the session (HTTP {response.status_code})",
                details={"status_code": response.status_code},
            )
        if response.status_code >= 500:
            raise RemoteUnavailableError(f"answered HTTP {response.status_code}")
        if response.status_code >= 400:
            raise OdooRPCError(
                f"HTTP {response.status_code}", model=model, method=model_method
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteUnavailableError("returned an undecodable response") from e

        error = data.get("error") if isinstance(data, dict) else None
        if error:
            error_data = error.get("data") or {}
            message = error_data.get("message") or error.get("message") or "Unknown Odoo error"
            exception_name = error_data.get("name")
            if _is_auth_error(exception_name, message):
                raise AuthExpiredError(
                    f"Odoo rejected the credentials: {message}",
                    details={"exception_name": exception_name},
                )
            raise OdooRPCError(
                message, exception_name=exception_name, model=model, method=model_method
            )
        return data.get("result") if isinstance(data, dict) else None

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def login(self) -> int:
        """Authenticate and cache the uid."""
        uid = self._post("common", "login", [self.db, self.login_name, self.api_key])
        if isinstance(uid, bool) or not isinstance(uid, int) or uid <= 0:
            raise AuthExpiredError(
                "Odoo login failed: invalid database, login or API key",
                details={"db": self.db, "login": self.login_name},
            )
        self._uid = uid
        logger.info(f"Logged in to Odoo {self.base_url} as uid {uid}", extra={"odoo_db": self.db})
        return uid

    @property
    def uid(self) -> int:
        if self._uid is None:
            return self.login()
        return self._uid

    def _execute(self, rpc_method: str, model: str, method: str, tail: List[Any]) -> Any:
        for attempt in (1, 2):
            args = [self.db, self.uid, self.api_key, model, method, *tail]
            try:
                return self._post("object", rpc_method, args, model=model, model_method=method)
            except AuthExpiredError:
                if attempt == 2:
                    raise
                logger.warning(
                    f"Odoo auth failure on {model}.{method}, logging in again",
                    extra={"model": model, "method": method},
                )
                self._uid = None
        return None  # pragma: no cover

    # ------------------------------------------------------------------
    # Generic calls
    # ------------------------------------------------------------------

    def call_kw(
        self,
        model: str,
        method: str,
        args: Optional[Sequence[Any]] = None,
        kwargs: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """object.execute_kw(model, method, args, kwargs)"""
        return self._execute("execute_kw", model, method, [list(args or []), kwargs or {}])

    def call(self, model: str, method: str, *args: Any) -> Any:
        """object.execute(model, method, *args)"""
        return self._execute("execute", model, method, list(args))

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    def search_read(
        self,
        model: str,
        domain: Sequence[Any],
        fields: Optional[Sequence[str]] = None,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
        order: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        kwargs: Dict[str, Any] = {}
        if fields is not None:
            kwargs["fields"] = list(fields)
        if limit is not None:
            kwargs["limit"] = limit
        if offset:
            kwargs["offset"] = offset
        if order:
            kwargs["order"] = order
        if context:
            kwargs["context"] = context
        return self.call_kw(model, "search_read", [list(domain)], kwargs) or []

    def read(
        self,
        model: str,
        ids: Sequence[int],
        fields: Optional[Sequence[str]] = None,
    ) -> List[Dict[str, Any]]:
        if not ids:
            return []
        kwargs = {"fields": list(fields)} if fields is not None else {}
        return self.call_kw(model, "read", [list(ids)], kwargs) or []

    def write(self, model: str, ids: Sequence[int], values: Dict[str, Any]) -> bool:
        return bool(self.call_kw(model, "write", [list(ids), values]))

    def create(
        self,
        model: str,
        values: Dict[str, Any],
        *,
        context: Optional[Dict[str, Any]] = None,
    ) -> int:
        kwargs = {"context": context} if context else {}
        result = self.call_kw(model, "create", [values], kwargs)
        # Newer Odoo versions return a list of ids for create
        if isinstance(result, list):
            return int(result[0])
        return int(result)

    def fields_get(self, model: str) -> FrozenSet[str]:
        """Field names of a model, fetched once per client."""
        if model not in self._fields_cache:
            fields = self.call_kw(model, "fields_get", [], {"attributes": ["type"]}) or {}
            self._fields_cache[model] = frozenset(fields.keys())
        return self._fields_cache[model]

    def has_field(self, model: str, field: str) -> bool:
        """Schema probe; an introspection error counts as 'absent' and is not cached."""
        try:
            return field in self.fields_get(model)
        except OdooRPCError as e:
            logger.warning(f"fields_get failed on {model}: {e.remote_message}")
            return False
