"""Clients for the remote rate limiter service.

Two families of entry points:

- Quiet: ``check_limit`` and ``try_to_acquire_permit_quietly``. Remote failures
  go through the error policy (fail-open by default) and never reach the
  caller, so they are safe to call from a request handling path.
- Strict: everything else. One round trip per call, failures propagate as
  :class:`TransportFailure`, :class:`ServerFault` or :class:`PermitTimeout`.

Rate expressions look like ``"5/m"``: 5 permits per minute
(s = second, m = minute, h = hour, d = day).
"""
from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Mapping, Sequence, TypeVar
from urllib.parse import quote

import httpx
from pydantic import TypeAdapter, ValidationError

from .config import settings
from .errors import REMOTE_FAILURES, PermitTimeout, ServerFault, TransportFailure, ValidationFailure
from .http import async_http_client, http_client
from .logging_metrics import bound_rate_id, latency_seconds, requests_total
from .models import RateRule
from .policy import ErrorPolicy, policy_from_settings
from .registry import RegistrationCache
from .snapshot import as_snapshot

T = TypeVar("T")

JSON_HEADERS = {"Content-Type": "application/json"}

_RULE = TypeAdapter(RateRule)
_RULES = TypeAdapter(list[RateRule])


def _parse_bool(text: str) -> bool:
    return text.strip().lower() == "true"


def _rate_path(rate_id: str) -> str:
    return "/rates/" + quote(rate_id, safe="")


def _rules_from(rules: Mapping[str, str] | Sequence[RateRule]) -> list[RateRule]:
    if isinstance(rules, Mapping):
        return [RateRule.of(rate_id, rate) for rate_id, rate in rules.items()]
    return list(rules)


def _check_tree(tree: Mapping[str, Any]) -> None:
    if not isinstance(tree, Mapping) or not tree.get("id"):
        raise ValidationFailure("Rate tree requires a non-empty id.")


class _ClientBase:
    def __init__(
        self,
        base_url: str | None,
        charset: str | None,
        cache: RegistrationCache | None,
        on_error: ErrorPolicy | None,
    ) -> None:
        self.base_url = (base_url or settings.base_url).rstrip("/")
        self.charset = charset or settings.charset
        # Explicit None check: an empty cache is falsy
        self.cache = cache if cache is not None else RegistrationCache()
        self.on_error = on_error or policy_from_settings()

    def _url(self, path: str) -> str:
        return self.base_url + path

    def _body(self, payload: Any) -> bytes:
        # Absent bodies still go out, as zero-length payloads
        if payload is None:
            return b""
        return json.dumps(payload, ensure_ascii=False).encode(self.charset)

    @staticmethod
    def _record(op: str, outcome: str, start: float) -> None:
        requests_total.labels(op=op, outcome=outcome).inc()
        latency_seconds.labels(op=op).observe(time.perf_counter() - start)

    @staticmethod
    def _check(response: httpx.Response, expect_body: bool) -> httpx.Response:
        if not response.is_success:
            raise ServerFault(response.status_code, response.reason_phrase, response.text)
        if expect_body and not response.text:
            raise ServerFault(response.status_code, "Empty response body", response.text)
        return response

    def _finish(self, op: str, start: float, response: httpx.Response, expect_body: bool) -> httpx.Response:
        try:
            self._check(response, expect_body)
        except ServerFault:
            self._record(op, "server_fault", start)
            raise
        self._record(op, "ok", start)
        return response

    def _transport_error(
        self, op: str, start: float, e: httpx.TransportError, rate_id: str | None, timeout: float | None
    ) -> Exception:
        if isinstance(e, httpx.TimeoutException) and timeout is not None:
            self._record(op, "timeout", start)
            return PermitTimeout(rate_id or op, timeout)
        self._record(op, "transport", start)
        return TransportFailure(f"{op} failed: {e!r}")

    @staticmethod
    def _decode(adapter: TypeAdapter[T], response: httpx.Response) -> T:
        try:
            return adapter.validate_json(response.text)
        except ValidationError as e:
            raise ServerFault(
                response.status_code, f"Malformed response body ({e.error_count()} errors)", response.text
            ) from e

    def _remember(self, rules: list[RateRule], fallback: str | None = None) -> None:
        for rule in rules:
            rate_id = rule.id or fallback
            if rate_id:
                self.cache.mark_registered(rate_id)

    @staticmethod
    def _acquire_request(
        rate_id: str, permits: int, async_: bool, request: Any
    ) -> tuple[dict[str, str], dict[str, Any] | None]:
        params = {"rateId": rate_id, "permits": str(permits), "async": "true" if async_ else "false"}
        snapshot = as_snapshot(request)
        return params, snapshot.to_wire() if snapshot is not None else None

    @staticmethod
    def _available_request(rate_id: str, request: Any) -> tuple[dict[str, str], dict[str, Any] | None]:
        snapshot = as_snapshot(request)
        return {"rateId": rate_id}, snapshot.to_wire() if snapshot is not None else None


class RateLimiterServiceClient(_ClientBase):
    """Blocking client. Each call is one round trip bounded by the connect/read timeouts."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        charset: str | None = None,
        cache: RegistrationCache | None = None,
        on_error: ErrorPolicy | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(base_url, charset, cache, on_error)
        self._transport = transport
        self.http = http_client(timeout, transport=transport)

    def with_timeout(self, timeout: float) -> RateLimiterServiceClient:
        """Same service, cache and policy; new connect/read timeout."""
        return RateLimiterServiceClient(
            self.base_url,
            timeout=timeout,
            charset=self.charset,
            cache=self.cache,
            on_error=self.on_error,
            transport=self._transport,
        )

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> RateLimiterServiceClient:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _send(
        self,
        op: str,
        method: str,
        path: str,
        *,
        payload: Any = None,
        params: Mapping[str, str] | None = None,
        timeout: float | None = None,
        rate_id: str | None = None,
        expect_body: bool = True,
    ) -> httpx.Response:
        start = time.perf_counter()
        try:
            response = self.http.request(
                method,
                self._url(path),
                params=params,
                content=self._body(payload),
                headers=JSON_HEADERS,
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.TransportError as e:
            raise self._transport_error(op, start, e, rate_id, timeout) from e
        return self._finish(op, start, response, expect_body)

    # Quiet entry points

    def check_limit(
        self,
        request: Any,
        rate_id: str,
        rate: str,
        condition: str | None = None,
        parent_id: str | None = None,
    ) -> bool:
        """Register the rate on first use, then try to acquire one permit.

        Remote failures are handed to the error policy. A rule that fails local
        validation, or a request object no snapshot can be built from, raises
        before any round trip.
        """
        snapshot = as_snapshot(request)
        with bound_rate_id(rate_id):
            if not self.cache.contains(rate_id):
                try:
                    self.post_rate(RateRule.of(rate_id, rate, condition, parent_id))
                except REMOTE_FAILURES as e:
                    return self.on_error("Post rate", e, rate_id, request)
            return self.try_to_acquire_permit_quietly(rate_id, snapshot)

    def try_to_acquire_permit_quietly(self, rate_id: str, request: Any = None) -> bool:
        with bound_rate_id(rate_id):
            try:
                return self.try_to_acquire_permits(rate_id, 1, False, request)
            except REMOTE_FAILURES as e:
                return self.on_error("Acquire permit", e, rate_id, request)

    # Strict entry points

    def try_to_acquire_permit(self, rate_id: str) -> bool:
        return self.try_to_acquire_permits(rate_id, 1, False, None)

    def try_to_acquire_permits(
        self,
        rate_id: str,
        permits: int = 1,
        async_: bool = False,
        request: Any = None,
        timeout: float | None = None,
    ) -> bool:
        """Try to acquire ``permits`` from the rate.

        With ``async_`` the service answers from current availability and
        deducts the permits in the background, so ``True`` means permits were
        available at decision time.
        """
        params, body = self._acquire_request(rate_id, permits, async_, request)
        response = self._send(
            "acquire", "PATCH", "/permits/acquire", payload=body, params=params, timeout=timeout, rate_id=rate_id
        )
        return _parse_bool(response.text)

    def is_permit_available(self, rate_id: str, request: Any = None, timeout: float | None = None) -> bool:
        params, body = self._available_request(rate_id, request)
        response = self._send(
            "available", "PATCH", "/permits/available", payload=body, params=params, timeout=timeout, rate_id=rate_id
        )
        return _parse_bool(response.text)

    def get_rates(self, rate_id: str) -> RateRule:
        response = self._send("get_rates", "GET", _rate_path(rate_id), rate_id=rate_id)
        return self._decode(_RULE, response)

    def post_rate(self, rule: RateRule) -> RateRule:
        rule.validate_rule()
        response = self._send("post_rate", "POST", "/rates", payload=rule.to_wire(), rate_id=rule.id)
        result = self._decode(_RULE, response)
        self._remember([result], fallback=rule.id)
        return result

    def post_rates(self, rules: Mapping[str, str] | Sequence[RateRule]) -> list[RateRule]:
        """Post rules one at a time, in order. The first failure aborts the batch."""
        return [self.post_rate(rule) for rule in _rules_from(rules)]

    def post_rate_tree(self, tree: Mapping[str, Any]) -> list[RateRule]:
        """Post a hierarchy of limits, for example::

            {"id": "parent", "rate": "99/s",
             "login": {"rate": "5/m"},
             "search": {"rate": "20/s", "when": "web.request.user.role=GUEST"}}
        """
        _check_tree(tree)
        response = self._send("post_rate_tree", "POST", "/rates/tree", payload=dict(tree), rate_id=tree["id"])
        result = self._decode(_RULES, response)
        self._remember(result)
        return result

    def delete_rates(self, rate_id: str) -> None:
        # The id stays in the registration cache
        self._send("delete_rates", "DELETE", _rate_path(rate_id), rate_id=rate_id, expect_body=False)


class AsyncRateLimiterServiceClient(_ClientBase):
    """asyncio client; ``timeout`` on strict calls bounds the awaited round trip."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        charset: str | None = None,
        cache: RegistrationCache | None = None,
        on_error: ErrorPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(base_url, charset, cache, on_error)
        self._transport = transport
        self.http = async_http_client(timeout, transport=transport)

    def with_timeout(self, timeout: float) -> AsyncRateLimiterServiceClient:
        return AsyncRateLimiterServiceClient(
            self.base_url,
            timeout=timeout,
            charset=self.charset,
            cache=self.cache,
            on_error=self.on_error,
            transport=self._transport,
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> AsyncRateLimiterServiceClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def _send(
        self,
        op: str,
        method: str,
        path: str,
        *,
        payload: Any = None,
        params: Mapping[str, str] | None = None,
        timeout: float | None = None,
        rate_id: str | None = None,
        expect_body: bool = True,
    ) -> httpx.Response:
        start = time.perf_counter()
        call = self.http.request(
            method, self._url(path), params=params, content=self._body(payload), headers=JSON_HEADERS
        )
        try:
            if timeout is None:
                response = await call
            else:
                async with asyncio.timeout(timeout):
                    response = await call
        # Only the caller budget raises TimeoutError; httpx timeouts are transport failures
        except TimeoutError as e:
            self._record(op, "timeout", start)
            raise PermitTimeout(rate_id or op, timeout or 0.0) from e
        except httpx.TransportError as e:
            raise self._transport_error(op, start, e, rate_id, None) from e
        return self._finish(op, start, response, expect_body)

    async def check_limit(
        self,
        request: Any,
        rate_id: str,
        rate: str,
        condition: str | None = None,
        parent_id: str | None = None,
    ) -> bool:
        snapshot = as_snapshot(request)
        with bound_rate_id(rate_id):
            if not self.cache.contains(rate_id):
                try:
                    await self.post_rate(RateRule.of(rate_id, rate, condition, parent_id))
                except REMOTE_FAILURES as e:
                    return self.on_error("Post rate", e, rate_id, request)
            return await self.try_to_acquire_permit_quietly(rate_id, snapshot)

    async def try_to_acquire_permit_quietly(self, rate_id: str, request: Any = None) -> bool:
        with bound_rate_id(rate_id):
            try:
                return await self.try_to_acquire_permits(rate_id, 1, False, request)
            except REMOTE_FAILURES as e:
                return self.on_error("Acquire permit", e, rate_id, request)

    async def try_to_acquire_permit(self, rate_id: str) -> bool:
        return await self.try_to_acquire_permits(rate_id, 1, False, None)

    async def try_to_acquire_permits(
        self,
        rate_id: str,
        permits: int = 1,
        async_: bool = False,
        request: Any = None,
        timeout: float | None = None,
    ) -> bool:
        params, body = self._acquire_request(rate_id, permits, async_, request)
        response = await self._send(
            "acquire", "PATCH", "/permits/acquire", payload=body, params=params, timeout=timeout, rate_id=rate_id
        )
        return _parse_bool(response.text)

    async def is_permit_available(self, rate_id: str, request: Any = None, timeout: float | None = None) -> bool:
        params, body = self._available_request(rate_id, request)
        response = await self._send(
            "available", "PATCH", "/permits/available", payload=body, params=params, timeout=timeout, rate_id=rate_id
        )
        return _parse_bool(response.text)

    async def get_rates(self, rate_id: str) -> RateRule:
        response = await self._send("get_rates", "GET", _rate_path(rate_id), rate_id=rate_id)
        return self._decode(_RULE, response)

    async def post_rate(self, rule: RateRule) -> RateRule:
        rule.validate_rule()
        response = await self._send("post_rate", "POST", "/rates", payload=rule.to_wire(), rate_id=rule.id)
        result = self._decode(_RULE, response)
        self._remember([result], fallback=rule.id)
        return result

    async def post_rates(self, rules: Mapping[str, str] | Sequence[RateRule]) -> list[RateRule]:
        return [await self.post_rate(rule) for rule in _rules_from(rules)]

    async def post_rate_tree(self, tree: Mapping[str, Any]) -> list[RateRule]:
        _check_tree(tree)
        response = await self._send(
            "post_rate_tree", "POST", "/rates/tree", payload=dict(tree), rate_id=tree["id"]
        )
        result = self._decode(_RULES, response)
        self._remember(result)
        return result

    async def delete_rates(self, rate_id: str) -> None:
        await self._send("delete_rates", "DELETE", _rate_path(rate_id), rate_id=rate_id, expect_body=False)
