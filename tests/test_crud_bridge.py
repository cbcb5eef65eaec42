"""CRUD-to-event bridge tests."""

from unittest.mock import patch

import pytest
from starlette.responses import PlainTextResponse

from gateway.api.crud import CrudBridge
from gateway.hub import HubDataLayer
from gateway.middleware.router import Router
from gateway.models.crud import ResourceDescriptor
from tests.helpers.hub import serve_crud


def _bridge(hub):
    return CrudBridge(HubDataLayer(hub), lambda name: Router(name=f"crud:{name}"))


@pytest.fixture
def crud_client(hub, make_gateway, client_for):
    """Gateway with a ``widgets`` resource and a data layer answering from ``answers``."""

    def _client(answers, calls=None, **overrides):
        serve_crud(hub, answers, calls)
        gw = make_gateway(**overrides)
        assert gw.crud({"name": "widgets", "path": "/widgets"})
        return client_for(gw)

    return _client


class TestRegistration:
    def test_binds_six_routes(self, hub):
        bridge = _bridge(hub)
        assert bridge.register({"name": "widgets", "path": "widgets/"})
        [router] = bridge.routers
        assert router.name == "crud:widgets"

        bindings = {(r.method, r.path) for r in router.routes}
        assert bindings == {
            ("POST", "/widgets"),
            ("GET", "/widgets"),
            ("POST", "/widgets/query"),
            ("GET", "/widgets/{id}"),
            ("PUT", "/widgets/{id}"),
            ("DELETE", "/widgets/{id}"),
        }
        assert [r.name for r in bridge.resources] == ["widgets"]

    @pytest.mark.parametrize(
        "descriptor",
        [
            {"name": "widgets"},
            {"path": "/widgets"},
            {"name": "", "path": "/widgets"},
            {"name": "widgets", "path": "   "},
            {"name": None, "path": None},
            {},
        ],
    )
    def test_incomplete_descriptor_is_skipped_with_warning(self, hub, descriptor):
        bridge = _bridge(hub)
        with patch("gateway.api.crud.logger") as mock_logger:
            assert bridge.register(descriptor) is False

        assert bridge.routers == []
        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args[0][0] == "crud_registration_rejected"

    def test_invalid_types_are_rejected(self, hub):
        bridge = _bridge(hub)
        with patch("gateway.api.crud.logger") as mock_logger:
            assert bridge.register({"name": ["not", "a", "string"], "path": "/x"}) is False
        assert bridge.routers == []
        mock_logger.warning.assert_called_once()

    def test_accepts_descriptor_model(self, hub):
        bridge = _bridge(hub)
        assert bridge.register(ResourceDescriptor(name="gadgets", path="/gadgets"))

    def test_rejected_descriptor_is_not_replayed(self, gateway):
        assert gateway.crud({"name": "widgets"}) is False
        gateway.configure()
        assert gateway.bridge is None or gateway.bridge.resources == []


class TestDispatch:
    def test_create_returns_result(self, crud_client):
        calls = []
        client = crud_client({"create": (None, {"id": 1, "a": 1})}, calls)
        resp = client.post("/widgets", json={"a": 1})

        assert resp.status_code == 200
        assert resp.json() == {"id": 1, "a": 1}
        assert calls == [("create", ("widgets", {"a": 1}))]

    def test_read_error_is_500_with_payload(self, crud_client):
        calls = []
        client = crud_client({"read": ("not found", None)}, calls)
        resp = client.get("/widgets/42")

        assert resp.status_code == 500
        assert resp.text == "not found"
        assert calls == [("read", ("widgets", "42"))]

    def test_structured_error_payload_is_json(self, crud_client):
        client = crud_client({"delete": ({"code": "locked"}, None)})
        resp = client.delete("/widgets/9")
        assert resp.status_code == 500
        assert resp.json() == {"code": "locked"}

    def test_read_all_sends_empty_query(self, crud_client):
        calls = []
        client = crud_client({"read": (None, [{"id": 1}, {"id": 2}])}, calls)
        resp = client.get("/widgets")

        assert resp.status_code == 200
        assert resp.json() == [{"id": 1}, {"id": 2}]
        assert calls == [("read", ("widgets", {}))]

    def test_query_sends_body_as_query(self, crud_client):
        calls = []
        client = crud_client({"read": (None, [])}, calls)
        resp = client.post("/widgets/query", json={"color": "red"})

        assert resp.status_code == 200
        assert resp.json() == []
        assert calls == [("read", ("widgets", {"color": "red"}))]

    def test_query_without_body_sends_empty_query(self, crud_client):
        calls = []
        client = crud_client({"read": (None, [])}, calls)
        client.post("/widgets/query")
        assert calls == [("read", ("widgets", {}))]

    def test_update_sends_id_and_body(self, crud_client):
        calls = []
        client = crud_client({"update": (None, {"id": "7", "a": 2})}, calls)
        resp = client.put("/widgets/7", json={"a": 2})

        assert resp.status_code == 200
        assert calls == [("update", ("widgets", "7", {"a": 2}))]

    def test_delete_sends_id(self, crud_client):
        calls = []
        client = crud_client({"delete": (None, None)}, calls)
        resp = client.delete("/widgets/7")

        assert resp.status_code == 200
        assert resp.content == b""
        assert calls == [("delete", ("widgets", "7"))]

    def test_string_result_is_text(self, crud_client):
        client = crud_client({"read": (None, "plain")})
        resp = client.get("/widgets/1")
        assert resp.text == "plain"
        assert resp.headers["content-type"].startswith("text/plain")

    def test_second_callback_is_ignored(self, hub, make_gateway, client_for):
        def double_answer(name, query, callback):
            callback(None, {"first": True})
            callback("late error", None)

        hub.on("read", double_answer)
        gw = make_gateway()
        gw.crud({"name": "widgets", "path": "/widgets"})
        resp = client_for(gw).get("/widgets/1")

        assert resp.status_code == 200
        assert resp.json() == {"first": True}

    def test_silent_data_layer_times_out(self, crud_client):
        client = crud_client({}, crud_timeout=0.05)
        with patch("gateway.hub.logger") as mock_logger:
            resp = client.get("/widgets/1")

        assert resp.status_code == 504
        assert resp.content == b""
        assert mock_logger.warning.call_args[0][0] == "crud_timeout"

    def test_unrelated_paths_fall_through(self, crud_client):
        client = crud_client({})
        assert client.patch("/widgets/1").status_code == 404
        assert client.get("/gadgets").status_code == 404


def test_crud_over_hub_event(hub, make_gateway, client_for):
    serve_crud(hub, {"read": (None, {"id": "3"})})
    gw = make_gateway()
    hub.emit("gateway.crud", {"name": "widgets", "path": "/widgets"})

    resp = client_for(gw).get("/widgets/3")
    assert resp.status_code == 200
    assert resp.json() == {"id": "3"}


def test_crud_routes_survive_reconfigure(hub, make_gateway, client_for):
    serve_crud(hub, {"read": (None, {"ok": True})})
    gw = make_gateway()
    gw.crud({"name": "widgets", "path": "/widgets"})
    gw.configure(cors=None)

    resp = client_for(gw).get("/widgets/1")
    assert resp.status_code == 200
    assert "access-control-allow-origin" not in resp.headers


def _deny(request, context):
    return PlainTextResponse("denied", status_code=401)


def test_middleware_guards_resources_registered_after_it(hub, make_gateway, client_for):
    serve_crud(hub, {"read": (None, {"secret": 1})})
    gw = make_gateway()
    gw.crud({"name": "widgets", "path": "/widgets"})
    gw.use(_deny)
    gw.crud({"name": "gadgets", "path": "/gadgets"})

    client = client_for(gw)
    assert client.get("/widgets/1").json() == {"secret": 1}
    resp = client.get("/gadgets/1")
    assert resp.status_code == 401
    assert resp.text == "denied"


def test_registration_order_survives_reconfigure(hub, make_gateway, client_for):
    serve_crud(hub, {"read": (None, {"secret": 1})})
    gw = make_gateway()
    gw.crud({"name": "widgets", "path": "/widgets"})
    gw.use(_deny)
    gw.crud({"name": "gadgets", "path": "/gadgets"})
    gw.configure(cors=None)

    names = [stage.name for stage in gw.app.chain.stages]
    assert names.index("crud:widgets") < names.index("_deny") < names.index("crud:gadgets")
    client = client_for(gw)
    assert client.get("/widgets/1").status_code == 200
    assert client.get("/gadgets/1").status_code == 401
