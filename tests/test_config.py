from unittest import mock

from pipenotify import config
from pipenotify.utils import ssm


def test_parameter_name_with_prefix():
    assert ssm.parameter_name("DATABASE_URL") == "DATABASE_URL"
    assert ssm.parameter_name("DATABASE_URL", "/pipenotify/prod/") == "/pipenotify/prod/DATABASE_URL"


def test_get_param_reads_ssm():
    client = mock.Mock()
    client.get_parameter.return_value = {"Parameter": {"Value": "s3cret"}}
    with mock.patch.object(ssm, "_ssm_client", return_value=client):
        assert ssm.get_param("PIPEDRIVE_WEBHOOK_SECRET", prefix="/pn") == "s3cret"
    client.get_parameter.assert_called_once_with(Name="/pn/PIPEDRIVE_WEBHOOK_SECRET", WithDecryption=True)


def test_ssm_only_consulted_when_enabled(monkeypatch):
    monkeypatch.setenv("CHAT_TIMEOUT_SECONDS", "7")
    monkeypatch.delenv("PIPENOTIFY_USE_SSM", raising=False)
    with mock.patch.object(ssm, "get_param") as get_param:
        assert config._get_param_with_fallback("CHAT_TIMEOUT_SECONDS") == "7"
    get_param.assert_not_called()


def test_ssm_value_wins_over_environment(monkeypatch):
    monkeypatch.setenv("PIPENOTIFY_USE_SSM", "true")
    monkeypatch.setenv("CHAT_TIMEOUT_SECONDS", "7")
    with mock.patch.object(ssm, "get_param", return_value="12"):
        assert config._int_param("CHAT_TIMEOUT_SECONDS", 10) == 12


def test_ssm_failure_falls_back_to_environment(monkeypatch):
    monkeypatch.setenv("PIPENOTIFY_USE_SSM", "1")
    monkeypatch.setenv("CHAT_TIMEOUT_SECONDS", "7")
    with mock.patch.object(ssm, "get_param", side_effect=RuntimeError("no credentials")):
        assert config._int_param("CHAT_TIMEOUT_SECONDS", 10) == 7


def test_database_url(monkeypatch):
    monkeypatch.delenv("PIPENOTIFY_USE_SSM", raising=False)
    monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db/pipenotify")
    assert config.get_database_url() == "postgresql://u:p@db/pipenotify"
    monkeypatch.delenv("DATABASE_URL")
    assert config.get_database_url() == "sqlite:///pipenotify-dev.sqlite"


def test_non_integer_setting_uses_default(monkeypatch):
    monkeypatch.delenv("PIPENOTIFY_USE_SSM", raising=False)
    monkeypatch.setenv("MAX_DELIVERY_ATTEMPTS", "three")
    assert config._int_param("MAX_DELIVERY_ATTEMPTS", 3) == 3


def test_app_handles_hold_real_collaborators():
    from pipenotify import create_app
    from pipenotify.chat_client import ChatClient
    from pipenotify.dispatch import DispatchSettings
    from pipenotify.queue import NotificationQueue

    handles = create_app(config.TestConfig).extensions["pipenotify"]

    assert isinstance(handles.chat_client, ChatClient)
    assert isinstance(handles.queue, NotificationQueue)
    assert isinstance(handles.settings, DispatchSettings)
    assert handles.settings.retry_base_delay == 1
