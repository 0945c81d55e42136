import json
from datetime import timedelta

import pyotp
import pytest

from helpdesk import cli
from helpdesk.auth import create_access_token
from helpdesk.models import RefreshTokenModel

API = "http://testserver"


@pytest.fixture(autouse=True)
def config_dir(tmp_path, monkeypatch):
    path = tmp_path / "cli"
    monkeypatch.setenv("HELPDESK_CONFIG_DIR", str(path))
    return path


def run(client, *argv):
    return cli.main(["--api-url", API, *argv], session=client)


def test_login_saves_tokens(client, create_user, capsys, config_dir):
    create_user(role="agent", username="cliagent", first_name="Cli", last_name="Agent")

    assert run(client, "login", "--email", "cliagent", "--password", "Secret123!") == 0
    assert "Logged in as Cli Agent (agent)" in capsys.readouterr().out

    saved = json.loads((config_dir / "config.json").read_text())
    assert saved["api_url"] == API
    assert saved["access_token"] and saved["refresh_token"]

    assert run(client, "whoami") == 0
    assert "cliagent@example.com" in capsys.readouterr().out


def test_login_failure_reports_error(client, create_user, capsys, config_dir):
    create_user(role="agent", username="cliagent")

    assert run(client, "login", "--email", "cliagent", "--password", "Wrong123!") == 1
    assert "Error: Invalid credentials" in capsys.readouterr().err
    assert not (config_dir / "config.json").exists()


def test_commands_require_login(client, capsys):
    assert run(client, "whoami") == 1
    assert "Not authenticated" in capsys.readouterr().err


def test_ticket_workflow(client, create_user, capsys):
    agent = create_user(role="agent", username="cliagent")
    run(client, "login", "--email", "cliagent", "--password", "Secret123!")
    capsys.readouterr()

    assert run(client, "ticket", "create", "--title", "Projector is dead", "--description", "No signal on HDMI input.", "--priority", "high", "--tag", "av") == 0
    out = capsys.readouterr().out
    assert out.startswith("Created TKT-00001")
    ticket_id = out.strip().split("(")[1].rstrip(")")

    assert run(client, "ticket", "assign", ticket_id, str(agent.id)) == 0
    assert "status in_progress" in capsys.readouterr().out

    assert run(client, "ticket", "list", "--mine") == 0
    out = capsys.readouterr().out
    assert "TKT-00001" in out
    assert "Page 1 of 1 (1 tickets)" in out

    assert run(client, "ticket", "priority", ticket_id, "critical") == 0
    assert "priority is now critical" in capsys.readouterr().out

    assert run(client, "ticket", "close", ticket_id, "--notes", "short") == 1
    assert "at least 10 characters" in capsys.readouterr().err

    assert run(client, "ticket", "close", ticket_id, "--notes", "Replaced the lamp.") == 0
    assert "TKT-00001 closed" in capsys.readouterr().out

    assert run(client, "ticket", "view", ticket_id) == 0
    out = capsys.readouterr().out
    assert "Status:    closed" in out
    assert "Resolution: Replaced the lamp." in out

    assert run(client, "ticket", "status", ticket_id, "open") == 1
    assert "Error:" in capsys.readouterr().err


def test_expired_access_token_is_refreshed(client, create_user, capsys, config_dir):
    user = create_user(role="end_user", username="cliuser")
    run(client, "login", "--email", "cliuser", "--password", "Secret123!")
    saved = json.loads((config_dir / "config.json").read_text())

    saved["access_token"] = create_access_token({"sub": user.username}, expires_delta=timedelta(seconds=-1))
    (config_dir / "config.json").write_text(json.dumps(saved))
    capsys.readouterr()

    assert run(client, "whoami") == 0
    assert "cliuser@example.com" in capsys.readouterr().out

    updated = json.loads((config_dir / "config.json").read_text())
    assert updated["refresh_token"] != saved["refresh_token"]
    assert updated["access_token"] != saved["access_token"]


def test_logout_clears_config(client, create_user, capsys, config_dir):
    create_user(role="end_user", username="cliuser")
    run(client, "login", "--email", "cliuser", "--password", "Secret123!")
    refresh_token = json.loads((config_dir / "config.json").read_text())["refresh_token"]

    assert run(client, "logout") == 0
    assert not (config_dir / "config.json").exists()

    r = client.post("/api/auth/refresh", json={"refresh_token": refresh_token})
    assert r.status_code == 401


def test_logout_with_expired_access_token_revokes_session(client, create_user, db_session, config_dir):
    user = create_user(role="end_user", username="cliuser")
    run(client, "login", "--email", "cliuser", "--password", "Secret123!")
    saved = json.loads((config_dir / "config.json").read_text())
    saved["access_token"] = create_access_token({"sub": user.username}, expires_delta=timedelta(seconds=-1))
    (config_dir / "config.json").write_text(json.dumps(saved))

    assert run(client, "logout") == 0

    db_session.expire_all()
    active = db_session.query(RefreshTokenModel).filter(
        RefreshTokenModel.user_id == user.id,
        RefreshTokenModel.revoked_at.is_(None),
    ).count()
    assert active == 0


def test_login_with_two_factor_code(client, create_user, db_session, capsys, config_dir):
    user = create_user(role="agent", username="cliagent", first_name="Cli", last_name="Agent")
    secret = pyotp.random_base32()
    user.two_factor_enabled = True
    user.two_factor_secret = secret
    db_session.commit()

    assert run(client, "login", "--email", "cliagent", "--password", "Secret123!", "--code", pyotp.TOTP(secret).now()) == 0
    assert "Logged in as Cli Agent (agent)" in capsys.readouterr().out

    saved = json.loads((config_dir / "config.json").read_text())
    assert saved["access_token"] and saved["refresh_token"]
    assert run(client, "whoami") == 0


def test_login_with_wrong_two_factor_code(client, create_user, db_session, capsys, config_dir):
    user = create_user(role="agent", username="cliagent")
    user.two_factor_enabled = True
    user.two_factor_secret = pyotp.random_base32()
    db_session.commit()

    assert run(client, "login", "--email", "cliagent", "--password", "Secret123!", "--code", "12345678") == 1
    assert "Error: Invalid two-factor code" in capsys.readouterr().err
    assert not (config_dir / "config.json").exists()
