import time
from unittest.mock import MagicMock

import pytest

from minerweb.config import ConfigManager
from minerweb.manager import (
    NONCE_SIZE,
    MinerManager,
    ServerControl,
    check_plot,
    scan_plot_dirs,
)


def make_plot(directory, name, nonces):
    path = directory / name
    with open(path, "wb") as f:
        f.truncate(nonces * NONCE_SIZE)
    return str(path)


def events(hub, msg_type):
    return [c.args[1] for c in hub.publish_event.call_args_list if c.args[0] == msg_type]


@pytest.fixture
def plot_dir(tmp_path):
    directory = tmp_path / "plots"
    directory.mkdir()
    make_plot(directory, "1234_0_2", 2)
    make_plot(directory, "1234_2_3_3", 3)
    # Claims 4 nonces but only holds 1
    with open(directory / "1234_5_4", "wb") as f:
        f.truncate(NONCE_SIZE)
    (directory / "notes.txt").write_text("not a plot", encoding="utf-8")
    return directory


@pytest.fixture
def config_manager(tmp_path, plot_dir):
    manager = ConfigManager(str(tmp_path))
    manager.update({"miner": {"plot_dirs": [str(plot_dir)]}})
    return manager


@pytest.fixture
def hub():
    return MagicMock()


def test_scan_only_counts_plot_files(plot_dir, tmp_path):
    found = scan_plot_dirs([str(plot_dir), str(tmp_path / "missing")])

    assert sorted(p.rsplit("/", 1)[-1] for p in found) == ["1234_0_2", "1234_2_3_3", "1234_5_4"]
    assert sum(found.values()) == (2 + 3 + 1) * NONCE_SIZE


def test_check_plot_detects_size_mismatch(plot_dir):
    assert check_plot(str(plot_dir / "1234_0_2")) == (True, "")

    ok, reason = check_plot(str(plot_dir / "1234_5_4"))
    assert not ok
    assert "does not match" in reason

    ok, reason = check_plot(str(plot_dir / "notes.txt"))
    assert not ok

    ok, reason = check_plot(str(plot_dir / "1234_9_1"))
    assert not ok
    assert reason.startswith("unreadable")


def test_rescan_publishes_totals(hub, config_manager):
    miner = MinerManager(hub, config_manager)
    miner._rescan()

    assert len(miner.plot_files) == 3
    started, finished = events(hub, "rescan")
    assert started["event"] == "started"
    assert finished["plot_files"] == 3
    assert finished["total_size"] == 6 * NONCE_SIZE


def test_rescan_runs_in_background(hub, config_manager):
    miner = MinerManager(hub, config_manager)
    miner.rescan_plot_directories()

    for _ in range(200):
        if len(events(hub, "rescan")) == 2:
            break
        time.sleep(0.01)
    assert len(miner.plot_files) == 3


def test_check_unknown_plot_file_is_refused(hub, config_manager, plot_dir):
    miner = MinerManager(hub, config_manager)

    assert miner.check_plot_file(str(plot_dir / "1234_0_2")) is False
    assert events(hub, "plotcheck") == []


def test_check_all_reports_corrupted_files(hub, config_manager, plot_dir):
    miner = MinerManager(hub, config_manager)
    miner._rescan()
    miner._check_all()

    results = {r["path"].rsplit("/", 1)[-1]: r["ok"] for r in events(hub, "plotcheck")}
    assert results == {"1234_0_2": True, "1234_2_3_3": True, "1234_5_4": False}

    summary = events(hub, "plotcheck-all")[-1]
    assert summary["event"] == "finished"
    assert [p.rsplit("/", 1)[-1] for p in summary["corrupted"]] == ["1234_5_4"]


def test_update_mining_info_publishes_snapshot(hub, config_manager):
    miner = MinerManager(hub, config_manager)
    miner.update_mining_info({"height": 10, "baseTarget": 99})

    assert miner.get_current_info()["height"] == 10
    [published] = events(hub, "mininginfo")
    assert published["baseTarget"] == 99


def test_failing_job_is_reported(hub, config_manager):
    miner = MinerManager(hub, config_manager)

    def explode():
        raise RuntimeError("disk gone")

    miner._run_job(explode, "minerweb-test")
    [error] = events(hub, "error")
    assert error == {"job": "minerweb-test", "message": "disk gone"}


def test_server_control_stops_attached_server(hub, config_manager):
    control = ServerControl(hub, config_manager)
    stop = MagicMock()
    control.attach(stop)

    control.restart()

    assert control.restart_requested
    stop.assert_called_once_with()
    assert events(hub, "restart") == [{}]


def test_server_control_without_server_only_announces(hub, config_manager):
    control = ServerControl(hub, config_manager)

    control.shutdown()

    assert events(hub, "shutdown") == [{}]
    assert not control.restart_requested


def test_propagate_config_change_hides_internal_keys(hub, config_manager):
    with open(config_manager.config_path, "a", encoding="utf-8") as f:
        f.write("web: [broken\n")
    control = ServerControl(hub, config_manager)

    control.propagate_config_change()

    [config] = events(hub, "config")
    assert "_config_error" not in config
    assert set(config) == {"web", "miner", "backends"}
