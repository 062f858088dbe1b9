"""
End-to-end tests for the smallchain command line.
"""
import csv
import io
import json
import logging

import pytest
import yaml

from blockchain_core import Blockchain, CONSENSUS_ALGORITHM_KEY
from cli import main
from config import ConfigError, DEFAULTS, load_config


@pytest.fixture
def workspace(tmp_path):
    key_file = str(tmp_path / "keys" / "validator.priv")
    chain_file = str(tmp_path / "chain.json")
    playlist = str(tmp_path / "playlist.yaml")
    return {"key": key_file, "chain": chain_file, "playlist": playlist, "dir": tmp_path}


def _run(capsys, *argv):
    code = main(list(argv))
    captured = capsys.readouterr()
    return code, captured.out, captured.err


class TestCommands:
    """Test the full keygen -> genesis -> workload -> block list flow."""

    def test_full_flow(self, workspace, capsys):
        code, out, _ = _run(capsys, "keygen", "--key-file", workspace["key"])
        assert code == 0
        public_key = out.strip()
        assert len(public_key) == 66

        code, out, _ = _run(capsys, "genesis", "--key-file", workspace["key"],
                            "--chain", workspace["chain"], "--consensus", "pbft")
        assert code == 0
        assert Blockchain.load(workspace["chain"]).get_setting(CONSENSUS_ALGORITHM_KEY) == "pbft"

        code, _, _ = _run(capsys, "playlist", "create", "--accounts", "3",
                          "--transactions", "5", "--seed", "1", "-o", workspace["playlist"])
        assert code == 0

        code, out, _ = _run(capsys, "workload", "--playlist", workspace["playlist"],
                            "--chain", workspace["chain"], "--block-size", "4")
        assert code == 0
        assert "chain height is 3" in out

        code, out, _ = _run(capsys, "block", "list", "--chain", workspace["chain"])
        assert code == 0
        lines = out.strip().splitlines()
        assert lines[0].split() == ["NUM", "BLOCK_ID", "BATS", "TXNS", "SIGNER"]
        assert [line.split()[0] for line in lines[1:]] == ["2", "1", "0"]
        assert lines[-1].split()[4] == public_key[:6] + "..."

        code, out, _ = _run(capsys, "block", "list", "--chain", workspace["chain"],
                            "--count", "1", "--format", "json")
        assert code == 0
        assert [d["num"] for d in json.loads(out)] == [2]

        code, out, _ = _run(capsys, "block", "show", "0", "--chain", workspace["chain"])
        assert code == 0
        assert public_key in out

    def test_playlist_to_stdout(self, capsys):
        code, out, _ = _run(capsys, "playlist", "create", "--accounts", "2", "--transactions", "0")
        assert code == 0
        assert out.count("transaction_type: create_account") == 2

    def test_workload_creates_missing_chain(self, workspace, capsys):
        _run(capsys, "playlist", "create", "--accounts", "2", "--transactions", "2",
             "-o", workspace["playlist"])
        code, _, _ = _run(capsys, "workload", "--playlist", workspace["playlist"],
                          "--chain", workspace["chain"], "--validators", "3")
        assert code == 0
        assert len(Blockchain.load(workspace["chain"])) == 2


class TestErrors:
    """Test error reporting and exit codes."""

    def test_missing_chain(self, workspace, capsys):
        code, _, err = _run(capsys, "block", "list", "--chain", workspace["chain"])
        assert code == 1
        assert "Chain file not found" in err

    def test_unknown_block(self, workspace, capsys):
        _run(capsys, "keygen", "--key-file", workspace["key"])
        _run(capsys, "genesis", "--key-file", workspace["key"], "--chain", workspace["chain"])
        code, _, err = _run(capsys, "block", "show", "7", "--chain", workspace["chain"])
        assert code == 1
        assert "No block with number 7" in err

    def test_genesis_refuses_overwrite(self, workspace, capsys):
        _run(capsys, "keygen", "--key-file", workspace["key"])
        assert _run(capsys, "genesis", "--key-file", workspace["key"], "--chain", workspace["chain"])[0] == 0
        assert _run(capsys, "genesis", "--key-file", workspace["key"], "--chain", workspace["chain"])[0] == 1
        assert _run(capsys, "genesis", "--key-file", workspace["key"],
                    "--chain", workspace["chain"], "--force")[0] == 0

    def test_keygen_refuses_overwrite(self, workspace, capsys):
        assert _run(capsys, "keygen", "--key-file", workspace["key"])[0] == 0
        assert _run(capsys, "keygen", "--key-file", workspace["key"])[0] == 1

    def test_genesis_without_key(self, workspace, capsys):
        code, _, err = _run(capsys, "genesis", "--key-file", workspace["key"], "--chain", workspace["chain"])
        assert code == 1
        assert "Could not read key file" in err

    def test_bad_playlist(self, workspace, capsys):
        (workspace["dir"] / "playlist.yaml").write_text("- transaction_type: withdraw\n")
        code, _, err = _run(capsys, "workload", "--playlist", workspace["playlist"],
                            "--chain", workspace["chain"])
        assert code == 1
        assert "unknown transaction_type" in err

    def test_invalid_count(self, workspace):
        with pytest.raises(SystemExit):
            main(["block", "list", "--chain", workspace["chain"], "--count", "0"])

    def test_failed_playlist_keeps_existing_output(self, workspace, capsys):
        existing = workspace["dir"] / "playlist.yaml"
        existing.write_text("keep me\n")
        code, _, err = _run(capsys, "playlist", "create", "--accounts", "1",
                            "--transactions", "3", "-o", workspace["playlist"])
        assert code == 1
        assert "two accounts" in err
        assert existing.read_text() == "keep me\n"

    def test_bad_config_value_exits_cleanly(self, workspace, capsys):
        config = workspace["dir"] / "smallchain.yaml"
        config.write_text("num_validators: four\n")
        (workspace["dir"] / "playlist.yaml").write_text("")
        code, _, err = _run(capsys, "--config", str(config), "workload",
                            "--playlist", workspace["playlist"], "--chain", workspace["chain"])
        assert code == 1
        assert "num_validators" in err


class TestConfig:
    """Test configuration loading."""

    def test_defaults(self):
        assert load_config() == DEFAULTS

    def test_yaml_overrides(self, tmp_path):
        path = tmp_path / "smallchain.yaml"
        path.write_text("block_list_count: 5\nconsensus_algorithm: raft\nunknown: 1\n")
        config = load_config(str(path))
        assert config["block_list_count"] == 5
        assert config["consensus_algorithm"] == "raft"
        assert "unknown" not in config

    def test_missing_file_uses_defaults(self, tmp_path):
        assert load_config(str(tmp_path / "nope.yaml")) == DEFAULTS

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigError):
            load_config(str(path))

    @pytest.mark.parametrize("text", [
        "block_list_count: 0\n",
        "num_rounds: -3\n",
        "block_size: true\n",
        "num_validators: four\n",
        "batch_size: 1.5\n",
        "chain_file: 7\n",
    ])
    def test_invalid_values_rejected(self, tmp_path, text):
        path = tmp_path / "bad.yaml"
        path.write_text(text)
        with pytest.raises(ConfigError):
            load_config(str(path))

    def test_zero_list_count_fails_block_list(self, workspace, capsys):
        config = workspace["dir"] / "smallchain.yaml"
        config.write_text("block_list_count: 0\n")
        code, out, err = _run(capsys, "--config", str(config), "block", "list",
                              "--chain", workspace["chain"])
        assert code == 1
        assert out == ""
        assert "block_list_count" in err

    def test_config_file_sets_chain(self, workspace, capsys):
        config = workspace["dir"] / "smallchain.yaml"
        config.write_text(f"chain_file: {workspace['chain']}\nkey_file: {workspace['key']}\n")
        assert _run(capsys, "--config", str(config), "keygen")[0] == 0
        assert _run(capsys, "--config", str(config), "genesis")[0] == 0
        code, out, _ = _run(capsys, "--config", str(config), "block", "list")
        assert code == 0
        assert len(out.strip().splitlines()) == 2


@pytest.fixture
def chain_file(workspace, capsys):
    _run(capsys, "keygen", "--key-file", workspace["key"])
    _run(capsys, "genesis", "--key-file", workspace["key"], "--chain", workspace["chain"])
    _run(capsys, "playlist", "create", "--accounts", "2", "--transactions", "2",
         "-o", workspace["playlist"])
    _run(capsys, "workload", "--playlist", workspace["playlist"], "--chain", workspace["chain"])
    return workspace["chain"]


class TestOutputOptions:
    """Test block output formats and lookups through the command line."""

    def test_block_list_csv(self, chain_file, capsys):
        code, out, _ = _run(capsys, "block", "list", "--chain", chain_file, "--format", "csv")
        assert code == 0
        rows = list(csv.reader(io.StringIO(out)))
        assert rows[0] == ["NUM", "BLOCK_ID", "BATS", "TXNS", "SIGNER"]
        assert [row[0] for row in rows[1:]] == ["1", "0"]
        assert rows[1][3] == "4"
        assert len(rows[2][4]) == 66

    def test_block_list_yaml(self, chain_file, capsys):
        code, out, _ = _run(capsys, "block", "list", "--chain", chain_file, "-F", "yaml")
        assert code == 0
        data = yaml.safe_load(out)
        assert [d["num"] for d in data] == [1, 0]
        assert data[0]["transactions"] == 4

    def test_block_show_by_full_id(self, chain_file, capsys):
        block_id = Blockchain.load(chain_file).get_block(1).block_id
        code, out, _ = _run(capsys, "block", "show", block_id, "--chain", chain_file,
                            "--format", "json")
        assert code == 0
        shown = json.loads(out)
        assert shown["header_signature"] == block_id
        assert shown["header"]["block_num"] == 1


class TestLogging:
    """Test verbosity flags."""

    @pytest.mark.parametrize("flags, level", [
        ([], logging.WARNING),
        (["-v"], logging.INFO),
        (["-vv"], logging.DEBUG),
        (["-v", "-v", "-v"], logging.DEBUG),
    ])
    def test_verbosity_levels(self, monkeypatch, capsys, flags, level):
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
        code, _, _ = _run(capsys, *flags, "playlist", "create", "--accounts", "2", "--transactions", "0")
        assert code == 0
        assert calls[0]["level"] == level
