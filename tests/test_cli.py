from pathlib import Path

import pytest

from iot_feedback.cli import apply_overrides, build_parser, main
from iot_feedback.config import load_config


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch):
    for name in ("DEVICE_ID", "MIN_TEMP", "BUILDING", "REMEDIATION_LOGIC"):
        monkeypatch.delenv(name, raising=False)


def test_simulate_flags_override_config(tmp_path: Path) -> None:
    config = load_config(tmp_path / "iot-feedback.cfg", environ={})
    args = build_parser().parse_args(
        [
            "simulate",
            "--device-id",
            "sensor-9",
            "--min-temp",
            "18.5",
            "--velocity",
            "2",
            "--log-level",
            "debug",
        ]
    )

    apply_overrides(config, args)

    assert config.device.device_id == "sensor-9"
    assert config.device.min_temperature == 18.5
    assert config.device.velocity == 2.0
    assert config.device.min_humidity == 60.0
    assert config.logging.level == "DEBUG"
    assert config.raw.get("device", "device_id") == "sensor-9"


def test_parser_requires_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_show_config_prints_sections(tmp_path: Path, capsys) -> None:
    config_path = tmp_path / "iot-feedback.cfg"
    config_path.write_text("[topics]\nbuilding = 3\n", encoding="utf-8")

    assert main(["-c", str(config_path), "show-config"]) == 0

    output = capsys.readouterr().out
    assert "[topics]" in output
    assert "building = 3" in output


def test_demo_prints_summary(tmp_path: Path, capsys) -> None:
    exit_code = main(
        ["-c", str(tmp_path / "iot-feedback.cfg"), "demo", "--iterations", "2"]
    )

    assert exit_code == 0
    output = capsys.readouterr().out
    assert "iterations=2 dispatched=2" in output
    assert "commands=2" in output


def test_invalid_config_returns_error(tmp_path: Path, capsys) -> None:
    config_path = tmp_path / "iot-feedback.cfg"
    config_path.write_text("[device]\nvelocity = fast\n", encoding="utf-8")

    assert main(["-c", str(config_path), "show-config"]) == 1
    assert "error:" in capsys.readouterr().err


def test_show_config_hides_broker_password(tmp_path: Path, capsys) -> None:
    config_path = tmp_path / "iot-feedback.cfg"
    config_path.write_text(
        "[broker]\nusername = building-1\npassword = s3cret-token\n",
        encoding="utf-8",
    )

    assert main(["-c", str(config_path), "show-config"]) == 0

    output = capsys.readouterr().out
    assert "s3cret-token" not in output
    assert "password = **********" in output
    assert "username = building-1" in output
