from helpers import add_user, make_session
from ticketing.services import configuration
from ticketing.services.configuration import (
    ADMIN_NOTIFICATION_EMAILS,
    OPERATIONAL_TEAM_EMAILS,
    get_admin_emails,
    get_config_value,
    get_operational_team_emails,
    get_sla_notification_recipients,
    set_config_value,
    split_emails,
)


def test_split_emails():
    assert split_emails(None) == []
    assert split_emails(" a@example.com, ,b@example.com ") == ["a@example.com", "b@example.com"]


def test_admin_emails_prefer_users_table():
    db = make_session()
    add_user(db, name="Ada", email="ada@example.com", user_type="admin")
    add_user(db, name="Otto", email="otto@example.com", user_type="operation")
    add_user(db, name="Cara", email="cara@example.com", user_type="customer")
    set_config_value(db, ADMIN_NOTIFICATION_EMAILS, "config@example.com")

    assert get_admin_emails(db) == ["ada@example.com", "otto@example.com"]


def test_admin_emails_fall_back_to_config_then_settings(monkeypatch):
    db = make_session()
    monkeypatch.setattr(configuration.settings, "admin_email", "env-admin@example.com")
    assert get_admin_emails(db) == ["env-admin@example.com"]

    set_config_value(db, ADMIN_NOTIFICATION_EMAILS, "ops@example.com, OPS@example.com")
    assert get_admin_emails(db) == ["ops@example.com"]


def test_operational_team_emails(monkeypatch):
    db = make_session()
    monkeypatch.setattr(configuration.settings, "operational_team_emails", "team@example.com")
    assert get_operational_team_emails(db) == ["team@example.com"]

    set_config_value(db, OPERATIONAL_TEAM_EMAILS, "night@example.com,day@example.com")
    assert get_operational_team_emails(db) == ["night@example.com", "day@example.com"]


def test_sla_recipients_are_deduplicated(monkeypatch):
    db = make_session()
    monkeypatch.setattr(configuration.settings, "operational_team_emails", "ada@example.com,team@example.com")
    add_user(db, name="Ada", email="ada@example.com", user_type="admin")

    assert get_sla_notification_recipients(db) == ["ada@example.com", "team@example.com"]


def test_partner_scope_requires_partner_id():
    db = make_session()
    assert get_config_value(db, "anything", scope="partner") is None
