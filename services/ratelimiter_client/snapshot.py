"""Turn an inbound request into a :class:`RequestSnapshot`.

The builder only talks to :class:`RequestSource`, a pull-based view over a live
request. :class:`StarletteRequestSource` adapts FastAPI/Starlette requests and
:class:`MappingRequestSource` holds plain values for tests and non-web callers.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol, runtime_checkable

from fastapi import Request

from .models import RequestSnapshot


SESSION_ID_KEY = "ratelimiter_session_id"


@runtime_checkable
class RequestSource(Protocol):
    def method(self) -> str | None: ...

    def header_names(self) -> Iterable[str]: ...

    def header_values(self, name: str) -> Iterable[str]: ...

    def attribute_names(self) -> Iterable[str]: ...

    def attribute(self, name: str) -> Any: ...

    def cookies(self) -> Mapping[str, str]: ...

    def locales(self) -> Iterable[str]: ...

    def parameter_names(self) -> Iterable[str]: ...

    def parameter_values(self, name: str) -> Iterable[str]: ...

    def auth_type(self) -> str | None: ...

    def character_encoding(self) -> str | None: ...

    def context_path(self) -> str | None: ...

    def servlet_path(self) -> str | None: ...

    def request_uri(self) -> str | None: ...

    def remote_addr(self) -> str | None: ...

    def session_id(self, create: bool) -> str | None: ...

    def user_principal(self) -> str | None: ...


def build_snapshot(source: RequestSource | None) -> RequestSnapshot | None:
    if source is None:
        return None

    # Conditions may refer to the session id, so one is created when missing
    session_id = source.session_id(create=True)

    header_names = list(source.header_names())
    headers = {n: tuple(source.header_values(n)) for n in header_names} if header_names else None

    attributes: dict[str, str | None] = {}
    for name in source.attribute_names():
        value = source.attribute(name)
        attributes[name] = None if value is None else str(value)

    cookies = dict(source.cookies()) or None
    locales = tuple(source.locales()) or None

    param_names = list(source.parameter_names())
    parameters = {n: tuple(source.parameter_values(n)) for n in param_names} if param_names else None

    return RequestSnapshot(
        method=source.method(),
        headers=headers,
        attributes=attributes,
        auth_type=source.auth_type(),
        character_encoding=source.character_encoding(),
        context_path=source.context_path(),
        cookies=cookies,
        locales=locales,
        parameters=parameters,
        remote_addr=source.remote_addr(),
        request_uri=source.request_uri(),
        servlet_path=source.servlet_path(),
        session_id=session_id,
        user_principal=source.user_principal(),
        user_roles=None,
    )


def as_snapshot(request: Any) -> RequestSnapshot | None:
    """Accept None, a ready snapshot, a Starlette request or any RequestSource."""
    if request is None or isinstance(request, RequestSnapshot):
        return request
    if isinstance(request, Request):
        return build_snapshot(StarletteRequestSource(request))
    if isinstance(request, RequestSource):
        return build_snapshot(request)
    raise TypeError(f"Cannot build a request snapshot from {type(request).__name__}")


def _accept_language(header: str) -> list[str]:
    ranked: list[tuple[float, int, str]] = []
    for i, part in enumerate(header.split(",")):
        tag, _, params = part.strip().partition(";")
        tag = tag.strip()
        if not tag or tag == "*":
            continue
        q = 1.0
        params = params.strip()
        if params.startswith("q="):
            try:
                q = float(params[2:])
            except ValueError:
                q = 0.0
        if q > 0:
            ranked.append((-q, i, tag))
    return [tag for _, _, tag in sorted(ranked)]


class StarletteRequestSource:
    """RequestSource over a FastAPI/Starlette request.

    Parameters come from the query string only; reading a form body needs an
    await and is left to the caller.
    """

    def __init__(self, request: Request) -> None:
        self.request = request

    def method(self) -> str | None:
        return self.request.method

    def header_names(self) -> Iterable[str]:
        return list(dict.fromkeys(self.request.headers.keys()))

    def header_values(self, name: str) -> Iterable[str]:
        return self.request.headers.getlist(name)

    def attribute_names(self) -> Iterable[str]:
        return list(getattr(self.request.state, "_state", {}).keys())

    def attribute(self, name: str) -> Any:
        return getattr(self.request.state, name, None)

    def cookies(self) -> Mapping[str, str]:
        return self.request.cookies

    def locales(self) -> Iterable[str]:
        return _accept_language(self.request.headers.get("accept-language", ""))

    def parameter_names(self) -> Iterable[str]:
        return list(self.request.query_params.keys())

    def parameter_values(self, name: str) -> Iterable[str]:
        return self.request.query_params.getlist(name)

    def auth_type(self) -> str | None:
        auth = self.request.headers.get("authorization")
        if not auth:
            return None
        return auth.split(" ", 1)[0].upper()

    def character_encoding(self) -> str | None:
        content_type = self.request.headers.get("content-type", "")
        for param in content_type.split(";")[1:]:
            key, _, value = param.strip().partition("=")
            if key.lower() == "charset":
                return value.strip('"') or None
        return None

    def context_path(self) -> str | None:
        return self.request.scope.get("root_path", "")

    def servlet_path(self) -> str | None:
        route = self.request.scope.get("route")
        return getattr(route, "path", None) or self.request.url.path

    def request_uri(self) -> str | None:
        return self.request.url.path

    def remote_addr(self) -> str | None:
        client = self.request.client
        return client.host if client else None

    def session_id(self, create: bool) -> str | None:
        # request.session asserts unless SessionMiddleware is installed
        if "session" not in self.request.scope:
            return None
        session = self.request.session
        sid = session.get(SESSION_ID_KEY)
        if sid is None and create:
            sid = uuid.uuid4().hex
            session[SESSION_ID_KEY] = sid
        return sid

    def user_principal(self) -> str | None:
        if "user" not in self.request.scope:
            return None
        user = self.request.user
        if not getattr(user, "is_authenticated", False):
            return None
        return getattr(user, "display_name", None) or None


@dataclass
class MappingRequestSource:
    """RequestSource backed by plain values."""

    http_method: str | None = None
    headers: Mapping[str, list[str]] = field(default_factory=dict)
    attributes: Mapping[str, Any] = field(default_factory=dict)
    cookie_map: Mapping[str, str] = field(default_factory=dict)
    locale_tags: list[str] = field(default_factory=list)
    parameters: Mapping[str, list[str]] = field(default_factory=dict)
    auth_scheme: str | None = None
    encoding: str | None = None
    context: str | None = None
    path: str | None = None
    uri: str | None = None
    remote: str | None = None
    session: str | None = None
    principal: str | None = None

    def method(self) -> str | None:
        return self.http_method

    def header_names(self) -> Iterable[str]:
        return list(self.headers)

    def header_values(self, name: str) -> Iterable[str]:
        return list(self.headers.get(name, []))

    def attribute_names(self) -> Iterable[str]:
        return list(self.attributes)

    def attribute(self, name: str) -> Any:
        return self.attributes.get(name)

    def cookies(self) -> Mapping[str, str]:
        return self.cookie_map

    def locales(self) -> Iterable[str]:
        return list(self.locale_tags)

    def parameter_names(self) -> Iterable[str]:
        return list(self.parameters)

    def parameter_values(self, name: str) -> Iterable[str]:
        return list(self.parameters.get(name, []))

    def auth_type(self) -> str | None:
        return self.auth_scheme

    def character_encoding(self) -> str | None:
        return self.encoding

    def context_path(self) -> str | None:
        return self.context

    def servlet_path(self) -> str | None:
        return self.path

    def request_uri(self) -> str | None:
        return self.uri

    def remote_addr(self) -> str | None:
        return self.remote

    def session_id(self, create: bool) -> str | None:
        if self.session is None and create:
            self.session = uuid.uuid4().hex
        return self.session

    def user_principal(self) -> str | None:
        return self.principal
