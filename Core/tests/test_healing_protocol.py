from __future__ import annotations

import logging

import pytest
from selenium.common.exceptions import InvalidSessionIdException, JavascriptException, NoSuchElementException
from selenium.webdriver.common.by import By

from selfheal.config.schema import HealingOptions
from selfheal.core.exceptions import ServiceRequestError
from selfheal.core.metadata import LocatorAttempt
from selfheal.core.protocol import HealingProtocol
from selfheal.logging.audit import HealingAuditLogger

from tests.helpers import ScriptedHealingClient, healing_auth

HEALED = {"selector": "css", "value": "#ok"}


def attempt_for(session, using=By.CSS_SELECTOR, value="#gone"):
    return LocatorAttempt(using=using, value=value, session_id=session.session_id, perform=session.lookup)


def test_successful_lookup_logs_usage_and_runs_returned_script(settings, make_session):
    session = make_session(elements={(By.CSS_SELECTOR, "#here")})
    client = ScriptedHealingClient(log_script="window.__logged__ = 1;")
    protocol = HealingProtocol(client, healing_auth(), settings)

    result = protocol.run(attempt_for(session, value="#here"), session, HealingOptions(self_heal=False))

    assert not result.failed
    assert result.element.value == "#here"
    (logged,) = client.calls_to("log_data")
    assert logged[:4] == ("css selector", "#here", "group-1", session.session_id)
    assert session.driver.scripts == ["window.__logged__ = 1;"]
    assert client.calls_to("heal_failure") == []


def test_healed_locator_is_retried_and_returned(settings, make_session, caplog):
    session = make_session(elements={(By.CSS_SELECTOR, "#ok")})
    client = ScriptedHealingClient(poll_results=[None, HEALED])
    protocol = HealingProtocol(client, healing_auth(), settings)

    with caplog.at_level(logging.INFO, logger="selfheal"):
        result = protocol.run(attempt_for(session), session, HealingOptions(self_heal=True))

    assert not result.failed
    assert result.element.using == By.CSS_SELECTOR
    assert result.element.value == "#ok"
    assert session.driver.scripts == ["window.__heal__ = true;"]
    assert len(client.calls_to("poll_result")) == 2
    assert client.calls_to("poll_result")[0] == ("https://healing.test", session.session_id, "token-1")
    healed_lines = [record.getMessage() for record in caplog.records if "Healing worked" in record.getMessage()]
    assert healed_lines == ["Healing worked, element found: css: #ok"]


def test_heal_call_carries_escaped_locator_and_identity(settings, make_session):
    session = make_session()
    client = ScriptedHealingClient(heal_script=None)
    protocol = HealingProtocol(client, healing_auth(is_group_ai_enabled=True), settings)

    protocol.run(attempt_for(session, By.XPATH, "//a[@title='it\"s']"), session, HealingOptions(self_heal=True))

    (heal_args,) = client.calls_to("heal_failure")
    assert heal_args[0] == "xpath"
    assert heal_args[1] == "//a[@title=\\'it\\\"s\\']"
    assert heal_args[2:6] == ("user-1", "group-1", session.session_id, True)
    assert heal_args[6] == protocol.region_info


def test_network_error_during_heal_returns_the_original_failure(settings, make_session):
    session = make_session()
    client = ScriptedHealingClient(failures={"heal_failure": ServiceRequestError("connection refused")})
    protocol = HealingProtocol(client, healing_auth(), settings)

    result = protocol.run(attempt_for(session), session, HealingOptions(self_heal=True))

    assert isinstance(result.error, NoSuchElementException)
    assert session.driver.lookups == [(By.CSS_SELECTOR, "#gone"), (By.CSS_SELECTOR, "#gone")]


@pytest.mark.parametrize(
    "failure_point",
    ["heal_failure", "poll_result", "execute_script"],
)
@pytest.mark.parametrize("element_exists", [True, False])
def test_faults_resolve_like_an_unhealed_lookup(settings, make_session, failure_point, element_exists):
    elements = {(By.CSS_SELECTOR, "#gone")} if element_exists else set()
    session = make_session(elements=elements)
    failures = {}
    if failure_point == "execute_script":
        session.driver.execute_script = _raise(JavascriptException("script blew up"))
    else:
        failures[failure_point] = RuntimeError("boom")
    client = ScriptedHealingClient(poll_results=[HEALED], failures=failures, log_script="noop();")
    protocol = HealingProtocol(client, healing_auth(), settings)

    result = protocol.run(attempt_for(session), session, HealingOptions(self_heal=True))

    assert result.failed is not element_exists
    if not element_exists:
        assert isinstance(result.error, NoSuchElementException)


def test_healing_disabled_for_group_returns_first_failure_without_calls(settings, make_session):
    session = make_session()
    client = ScriptedHealingClient()
    protocol = HealingProtocol(client, healing_auth(is_healing_enabled=False), settings)

    result = protocol.run(attempt_for(session), session, HealingOptions(self_heal=True))

    assert isinstance(result.error, NoSuchElementException)
    assert client.calls == []
    assert len(session.driver.lookups) == 1


def test_without_opt_in_failures_are_not_healed(settings, make_session):
    session = make_session()
    client = ScriptedHealingClient()
    protocol = HealingProtocol(client, healing_auth(default_log_data_enabled=True), settings)

    result = protocol.run(attempt_for(session), session, HealingOptions(self_heal=False))

    assert result.failed
    assert client.calls_to("heal_failure") == []


def test_missing_script_skips_execution_and_polling(settings, make_session):
    session = make_session()
    client = ScriptedHealingClient(heal_script=None)
    protocol = HealingProtocol(client, healing_auth(), settings)

    result = protocol.run(attempt_for(session), session, HealingOptions(self_heal=True))

    assert result.failed
    assert session.driver.scripts == []
    assert client.calls_to("poll_result") == []


def test_poll_gives_up_after_configured_attempts(settings, make_session):
    session = make_session()
    client = ScriptedHealingClient(poll_results=[])
    protocol = HealingProtocol(client, healing_auth(), settings.model_copy(update={"poll_max_attempts": 5}))

    result = protocol.run(attempt_for(session), session, HealingOptions(self_heal=True))

    assert result.failed
    assert len(client.calls_to("poll_result")) == 5


def test_poll_gives_up_at_wall_clock_timeout(settings, make_session):
    session = make_session()
    client = ScriptedHealingClient(poll_results=[])
    bounded = settings.model_copy(
        update={"poll_max_attempts": 10_000, "poll_timeout_seconds": 0.05, "poll_interval_seconds": 0.01}
    )
    protocol = HealingProtocol(client, healing_auth(), bounded)

    result = protocol.run(attempt_for(session), session, HealingOptions(self_heal=True))

    assert result.failed
    assert 1 <= len(client.calls_to("poll_result")) < 10_000


def test_failed_retry_returns_the_first_failure(settings, make_session):
    session = make_session()
    client = ScriptedHealingClient(poll_results=[HEALED])
    protocol = HealingProtocol(client, healing_auth(), settings)
    attempt = attempt_for(session)

    result = protocol.run(attempt, session, HealingOptions(self_heal=True))

    assert "#gone" in str(result.error)
    assert session.driver.lookups == [(By.CSS_SELECTOR, "#gone"), (By.CSS_SELECTOR, "#ok")]


def test_session_closed_mid_heal_resolves_to_original_failure(settings, make_session):
    session = make_session()
    client = ScriptedHealingClient(poll_results=[HEALED])
    original_heal = client.heal_failure

    def heal_then_close(*args):
        script = original_heal(*args)
        session.quit()
        return script

    client.heal_failure = heal_then_close
    protocol = HealingProtocol(client, healing_auth(), settings)

    result = protocol.run(attempt_for(session), session, HealingOptions(self_heal=True))

    assert isinstance(result.error, NoSuchElementException)
    assert session.driver.scripts == []
    assert len(session.driver.lookups) == 1


def test_invalid_session_from_driver_is_treated_as_teardown(settings, make_session):
    session = make_session()
    session.driver.execute_script = _raise(InvalidSessionIdException("session deleted"))
    client = ScriptedHealingClient(poll_results=[HEALED])
    protocol = HealingProtocol(client, healing_auth(), settings)

    result = protocol.run(attempt_for(session), session, HealingOptions(self_heal=True))

    assert isinstance(result.error, NoSuchElementException)
    assert len(session.driver.lookups) == 1


def test_healing_errors_log_warning_only_when_opted_in(settings, make_session, caplog):
    client = ScriptedHealingClient(log_script="x();", failures={"log_data": RuntimeError("down")})
    session = make_session(elements={(By.CSS_SELECTOR, "#here")})
    protocol = HealingProtocol(client, healing_auth(), settings)

    with caplog.at_level(logging.DEBUG, logger="selfheal"):
        protocol.run(attempt_for(session, value="#here"), session, HealingOptions(self_heal=False))
    assert not [record for record in caplog.records if record.levelno >= logging.WARNING]

    caplog.clear()
    with caplog.at_level(logging.DEBUG, logger="selfheal"):
        result = protocol.run(attempt_for(session, value="#here"), session, HealingOptions(self_heal=True))
    assert not result.failed
    assert any("Something went wrong while healing" in record.getMessage() for record in caplog.records)


def _raise(exc):
    def raiser(*args, **kwargs):
        raise exc

    return raiser


def test_healing_attempts_are_audited(settings, make_session, tmp_path):
    session = make_session(elements={(By.CSS_SELECTOR, "#ok"), (By.CSS_SELECTOR, "#here")})
    audit_logger = HealingAuditLogger(tmp_path / "audit")
    client = ScriptedHealingClient(poll_results=[HEALED])
    protocol = HealingProtocol(client, healing_auth(), settings, audit_logger)

    protocol.run(attempt_for(session, value="#here"), session, HealingOptions(self_heal=True))
    protocol.run(attempt_for(session), session, HealingOptions(self_heal=True))

    (entry,) = audit_logger.read_attempts()
    assert entry["locator_value"] == "#gone"
    assert entry["healed_value"] == "#ok"
    assert entry["success"] is True
    assert entry["states"][-1] == "return_healed_result"


def test_each_poll_is_limited_to_the_remaining_poll_time(settings, make_session):
    session = make_session()
    client = ScriptedHealingClient(poll_results=[None, None])
    protocol = HealingProtocol(client, healing_auth(), settings)

    protocol.run(attempt_for(session), session, HealingOptions(self_heal=True))

    assert len(client.poll_timeouts) == 3
    assert all(0 < timeout <= settings.poll_timeout_seconds for timeout in client.poll_timeouts)
    assert client.poll_timeouts == sorted(client.poll_timeouts, reverse=True)
