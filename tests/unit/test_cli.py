import json
import logging
from pathlib import Path

import pytest

from portknob.cli import main


@pytest.fixture(autouse=True)
def _no_admin_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PORTKNOB_ADMIN_SECRET", raising=False)


def test_init_command_writes_config(tmp_path: Path) -> None:
    config_path = tmp_path / "portknob.conf"
    rc = main(["init", "--config", str(config_path)])
    assert rc == 0
    assert config_path.exists()


def test_init_command_refuses_existing_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_path = tmp_path / "portknob.conf"
    assert main(["init", "--config", str(config_path)]) == 0
    assert main(["init", "--config", str(config_path)]) == 1
    assert "config already exists" in capsys.readouterr().err
    assert main(["init", "--config", str(config_path), "--force"]) == 0


def test_check_command_accepts_sample_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_path = tmp_path / "portknob.conf"
    main(["init", "--config", str(config_path)])
    capsys.readouterr()
    rc = main(["check", "--config", str(config_path)])
    assert rc == 0
    assert capsys.readouterr().out.strip() == "config ok: 1 firewall rules, 1 secrets"


def test_check_command_reports_config_errors(write_settings, capsys: pytest.CaptureFixture[str]) -> None:
    path = write_settings(
        """
        [daemon]
        firewall-deny-method = "block"
        """
    )
    rc = main(["check", "--config", str(path)])
    assert rc == 2
    err = capsys.readouterr().err
    assert err.startswith("error: ")
    assert 'option "firewall-deny-method" does not support "block"' in err


def test_check_command_reports_missing_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    rc = main(["check", "--config", str(tmp_path / "absent.conf")])
    assert rc == 2
    assert "cannot read settings file" in capsys.readouterr().err


def test_show_command_redacts_secrets(write_settings, capsys: pytest.CaptureFixture[str]) -> None:
    path = write_settings(
        """
        [[firewall]]
        comment = "web"
        dest = "203.0.113.5/32"
        dport = "443"

        [secrets]
        alice = "hunter2"
        """
    )
    rc = main(["show", "--config", str(path)])
    assert rc == 0
    output = capsys.readouterr().out
    assert "hunter2" not in output
    payload = json.loads(output)
    assert payload["daemon"]["listen"] == "[::1]:706"
    assert payload["firewall"][0]["dest"] == "203.0.113.5/32"
    assert payload["secrets"] == {"alice": "********"}

    rc = main(["show", "--config", str(path), "--reveal-secrets"])
    assert rc == 0
    assert json.loads(capsys.readouterr().out)["secrets"] == {"alice": "hunter2"}


def test_doctor_command_fails_on_sample_secret(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_path = tmp_path / "portknob.conf"
    main(["init", "--config", str(config_path)])
    capsys.readouterr()
    rc = main(["doctor", "--config", str(config_path), "--skip-filesystem"])
    assert rc == 1
    report = json.loads(capsys.readouterr().out)
    assert report["ok"] is False


def test_doctor_command_passes_for_hardened_config(write_settings, capsys: pytest.CaptureFixture[str]) -> None:
    path = write_settings(
        """
        [[firewall]]
        proto = "tcp"
        dport = "22"

        [secrets]
        alice = "a long operator chosen secret"
        """
    )
    rc = main(["doctor", "--config", str(path), "--skip-filesystem"])
    assert rc == 0
    assert json.loads(capsys.readouterr().out)["ok"] is True


def test_log_level_option_is_case_insensitive(write_settings) -> None:
    path = write_settings('[[firewall]]\ndport = "22"\n')
    assert main(["--log-level", "error", "check", "--config", str(path)]) == 0


@pytest.mark.parametrize("command", [["check"], ["show"], ["doctor", "--skip-filesystem"]])
def test_verbose_setting_raises_log_level_for_every_command(
    write_settings, capsys: pytest.CaptureFixture[str], command: list[str]
) -> None:
    path = write_settings(
        """
        [daemon]
        verbose = 1

        [[firewall]]
        dport = "22"
        """
    )
    main([command[0], "--config", str(path), *command[1:]])
    capsys.readouterr()
    assert logging.getLogger("portknob").level == logging.DEBUG


def test_show_command_prints_destination_as_written(write_settings, capsys: pytest.CaptureFixture[str]) -> None:
    path = write_settings(
        """
        [[firewall]]
        dest = "192.0.2.5/24"
        dport = "22"
        """
    )
    assert main(["show", "--config", str(path)]) == 0
    assert json.loads(capsys.readouterr().out)["firewall"][0]["dest"] == "192.0.2.5/24"
