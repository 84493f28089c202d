import time
from unittest.mock import Mock

import jwt
import pytest

from cablekit.identity import (
    EXPIRED_MESSAGE,
    UNAUTHORIZED_MESSAGE,
    IdentifiableController,
    JWTConfig,
    JWTIdentifier,
    welcome_message,
)
from cablekit.messages import CommandResult, ConnectResult, SessionEnv, Status

KEY = "secret"


@pytest.fixture
def env():
    return SessionEnv(url="ws://demo.example.com/cable", headers={"cookie": "token"})


@pytest.fixture
def command_result():
    return CommandResult(transmissions=["message_sent"], streams=["chat_42"])


@pytest.fixture
def controller():
    return Mock()


@pytest.fixture
def identifier():
    return Mock()


@pytest.fixture
def subject(controller, identifier):
    return IdentifiableController(controller, identifier)


def test_start(subject, controller):
    controller.start.return_value = None
    assert subject.start() is None
    controller.start.assert_called_once_with()


def test_shutdown(subject, controller):
    controller.shutdown.return_value = None
    assert subject.shutdown() is None
    controller.shutdown.assert_called_once_with()


def test_authenticate_success(subject, controller, identifier, env):
    expected = ConnectResult(
        identifier="test_ids",
        transmissions=['{"type":"welcome","sid":"2021"}'],
        status=Status.SUCCESS,
    )
    identifier.identify.return_value = expected

    res = subject.authenticate("2021", env)

    assert res is expected
    assert res.identifier == "test_ids"
    assert res.disconnect_interest == -1
    assert res.cstate == {}
    identifier.identify.assert_called_once_with("2021", env)
    controller.authenticate.assert_not_called()


def test_authenticate_failure(subject, controller, identifier, env):
    expected = ConnectResult(status=Status.FAILURE)
    identifier.identify.return_value = expected

    res = subject.authenticate("2020", env)

    assert res is expected
    assert res.status is Status.FAILURE
    assert res.disconnect_interest == -1
    controller.authenticate.assert_not_called()


def test_authenticate_keeps_existing_cstate(subject, identifier, env):
    expected = ConnectResult(identifier="ids", cstate={"a": "b"})
    identifier.identify.return_value = expected

    res = subject.authenticate("1", env)

    assert res.cstate == {"a": "b"}


def test_authenticate_error(subject, controller, identifier, env):
    identifier.identify.side_effect = RuntimeError("identifier failed")

    with pytest.raises(RuntimeError, match="identifier failed"):
        subject.authenticate("1998", env)

    controller.authenticate.assert_not_called()


def test_authenticate_passthrough(subject, controller, identifier, env):
    expected = ConnectResult(
        identifier="test_ids",
        transmissions=['{"type":"welcome","sid":"2022"}'],
        status=Status.SUCCESS,
    )
    controller.authenticate.return_value = expected
    identifier.identify.return_value = None

    res = subject.authenticate("2022", env)

    assert res is expected
    assert res.disconnect_interest == 0
    controller.authenticate.assert_called_once_with("2022", env)


def test_subscribe(subject, controller, env, command_result):
    controller.subscribe.return_value = command_result
    assert subject.subscribe("42", env, "name=jack", "chat") is command_result
    controller.subscribe.assert_called_once_with("42", env, "name=jack", "chat")


def test_unsubscribe(subject, controller, env, command_result):
    controller.unsubscribe.return_value = command_result
    assert subject.unsubscribe("42", env, "name=jack", "chat") is command_result
    controller.unsubscribe.assert_called_once_with("42", env, "name=jack", "chat")


def test_perform(subject, controller, env, command_result):
    controller.perform.return_value = command_result
    assert subject.perform("42", env, "name=jack", "chat", "ping") is command_result
    controller.perform.assert_called_once_with("42", env, "name=jack", "chat", "ping")


def test_disconnect_propagates_error(subject, controller, env):
    controller.disconnect.side_effect = RuntimeError("foo")

    with pytest.raises(RuntimeError, match="foo"):
        subject.disconnect("42", env, "name=jack", ["chat"])

    controller.disconnect.assert_called_once_with("42", env, "name=jack", ["chat"])


def test_welcome_message():
    assert welcome_message("2021") == '{"type":"welcome","sid":"2021"}'


def test_jwt_config_enabled():
    assert JWTConfig().enabled() is False
    assert JWTConfig(secret=KEY).enabled() is True
    assert JWTConfig().param == "jid"


def _make_token(claims, key=KEY, algorithm="HS256"):
    return jwt.encode(claims, key, algorithm=algorithm)


def _identifier(force=False):
    return JWTIdentifier(JWTConfig(secret=KEY, force=force))


def test_jwt_identify_from_query():
    raw = _make_token({"ext": '{"user":"jack"}'})
    env = SessionEnv(url=f"ws://demo.example.com/cable?jid={raw}")

    res = _identifier().identify("2021", env)

    assert res.identifier == '{"user":"jack"}'
    assert res.status is Status.SUCCESS
    assert res.transmissions == ['{"type":"welcome","sid":"2021"}']


def test_jwt_identify_from_header():
    raw = _make_token({"ext": "ids"})
    env = SessionEnv(url="ws://demo.example.com/cable", headers={"x-jid": raw})

    res = _identifier().identify("7", env)

    assert res.identifier == "ids"
    assert res.status is Status.SUCCESS


def test_jwt_header_name_is_lowercased():
    identifier = JWTIdentifier(JWTConfig(secret=KEY, param="Auth"))
    assert identifier.header_name == "x-auth"


def test_jwt_no_token_not_required():
    env = SessionEnv(url="ws://demo.example.com/cable")
    assert _identifier().identify("1", env) is None


def test_jwt_no_token_required():
    env = SessionEnv(url="ws://demo.example.com/cable")

    res = _identifier(force=True).identify("1", env)

    assert res.status is Status.FAILURE
    assert res.transmissions == [UNAUTHORIZED_MESSAGE]


def test_jwt_expired_token():
    raw = _make_token({"ext": "ids", "exp": int(time.time()) - 60})
    env = SessionEnv(url=f"ws://demo.example.com/cable?jid={raw}")

    res = _identifier().identify("1", env)

    assert res.status is Status.FAILURE
    assert res.transmissions == [EXPIRED_MESSAGE]


def test_jwt_wrong_key():
    raw = _make_token({"ext": "ids"}, key="placeholder")
    env = SessionEnv(url=f"ws://demo.example.com/cable?jid={raw}")

    res = _identifier().identify("1", env)

    assert res.transmissions == [UNAUTHORIZED_MESSAGE]


def test_jwt_malformed_token():
    env = SessionEnv(url="ws://demo.example.com/cable?jid=token")

    res = _identifier().identify("1", env)

    assert res.status is Status.FAILURE
    assert res.transmissions == [UNAUTHORIZED_MESSAGE]


def test_jwt_unsigned_token_rejected():
    raw = jwt.encode({"ext": "ids"}, None, algorithm="none")
    env = SessionEnv(url=f"ws://demo.example.com/cable?jid={raw}")

    res = _identifier().identify("1", env)

    assert res.transmissions == [UNAUTHORIZED_MESSAGE]


def test_jwt_missing_identifiers():
    raw = _make_token({"sub": "jack"})
    env = SessionEnv(url=f"ws://demo.example.com/cable?jid={raw}")

    with pytest.raises(ValueError, match="doesn't contain identifiers"):
        _identifier().identify("1", env)


def test_jwt_through_controller():
    raw = _make_token({"ext": "ids"})
    env = SessionEnv(url=f"ws://demo.example.com/cable?jid={raw}")
    controller = Mock()

    res = IdentifiableController(controller, _identifier()).authenticate("5", env)

    assert res.identifier == "ids"
    assert res.disconnect_interest == -1
    assert res.cstate == {}
    controller.authenticate.assert_not_called()