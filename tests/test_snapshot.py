import pytest
from pydantic import ValidationError
from starlette.requests import Request

from ratelimiter_client import MappingRequestSource, RequestSnapshot, StarletteRequestSource, build_snapshot
from ratelimiter_client.snapshot import SESSION_ID_KEY, as_snapshot


def test_absent_request_gives_absent_snapshot():
    assert build_snapshot(None) is None
    assert as_snapshot(None) is None


def test_empty_sections_are_absent():
    snap = build_snapshot(MappingRequestSource(http_method="GET"))
    assert snap.method == "GET"
    assert snap.headers is None
    assert snap.cookies is None
    assert snap.locales is None
    assert snap.parameters is None
    assert snap.attributes == {}
    assert snap.user_roles is None


def test_session_is_created_when_missing():
    source = MappingRequestSource()
    snap = build_snapshot(source)
    assert snap.session_id
    assert source.session == snap.session_id


def test_populated_source():
    source = MappingRequestSource(
        http_method="POST",
        headers={"X-Trace": ["a", "b"]},
        attributes={"tenant": 7, "missing": None},
        cookie_map={"sid": "abc"},
        locale_tags=["en-US", "fr"],
        parameters={"q": ["1", "2"]},
        remote="10.0.0.1",
        uri="/basket",
        session="s-1",
        principal="alice",
    )
    snap = build_snapshot(source)
    assert snap.headers == {"X-Trace": ("a", "b")}
    assert snap.attributes == {"tenant": "7", "missing": None}
    assert snap.cookies == {"sid": "abc"}
    assert snap.locales == ("en-US", "fr")
    assert snap.parameters == {"q": ("1", "2")}
    assert snap.session_id == "s-1"
    assert snap.user_principal == "alice"


def test_snapshot_is_immutable():
    snap = build_snapshot(MappingRequestSource(http_method="GET"))
    with pytest.raises(Exception):
        snap.method = "POST"  # type: ignore[misc]


def test_wire_names_are_camel_case():
    wire = RequestSnapshot(remote_addr="1.2.3.4", request_uri="/x", servlet_path="/x").to_wire()
    assert wire == {"remoteAddr": "1.2.3.4", "requestUri": "/x", "servletPath": "/x"}


def _starlette_request(**extra):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/basket",
        "root_path": "",
        "query_string": b"a=1&a=2&b=3",
        "headers": [
            (b"accept-language", b"fr;q=0.5, en-US, de;q=0"),
            (b"cookie", b"sid=abc"),
            (b"x-multi", b"1"),
            (b"x-multi", b"2"),
            (b"authorization", b"Bearer token"),
            (b"content-type", b"application/json; charset=UTF-8"),
        ],
        "client": ("10.0.0.1", 1234),
    }
    scope.update(extra)
    return Request(scope)


def test_starlette_request_source():
    request = _starlette_request(session={})
    request.state.tenant = "acme"
    snap = as_snapshot(request)
    assert snap.method == "GET"
    assert snap.headers["x-multi"] == ("1", "2")
    assert snap.cookies == {"sid": "abc"}
    assert snap.locales == ("en-US", "fr")
    assert snap.parameters == {"a": ("1", "2"), "b": ("3",)}
    assert snap.attributes == {"tenant": "acme"}
    assert snap.auth_type == "BEARER"
    assert snap.character_encoding == "UTF-8"
    assert snap.remote_addr == "10.0.0.1"
    assert snap.request_uri == "/basket"
    assert snap.session_id == request.session[SESSION_ID_KEY]


def test_starlette_without_session_middleware():
    snap = build_snapshot(StarletteRequestSource(_starlette_request()))
    assert snap.session_id is None
    assert snap.user_principal is None


def test_unsupported_request_type():
    with pytest.raises(TypeError):
        as_snapshot(object())


def test_snapshot_fields_cannot_be_reassigned():
    snap = build_snapshot(MappingRequestSource(http_method="GET"))
    with pytest.raises(ValidationError):
        snap.method = "POST"
    assert snap.method == "GET"
