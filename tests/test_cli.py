"""Tests for the civic access CLI — proves CLI dispatches correctly."""

import json

import pytest

from civicaccess.cli import build_parser, main


WALLET = "wallet-overview-deck1"
IDENTITY = "identity-verification-deck12"


@pytest.fixture
def run(tmp_path, capsys):
    """Invoke the CLI against an isolated data directory; return (exit_code, stdout, stderr)."""
    def _run(*argv: str):
        code = main(["--data-dir", str(tmp_path), *argv])
        captured = capsys.readouterr()
        return code, captured.out, captured.err
    return _run


class TestCLIParsing:
    def test_check_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args([
            "check", "--mission", IDENTITY, "--user", "alice",
            "--tier", "Verifier", "--trust", "60", "--replay", f"{WALLET}:trace:abc",
        ])
        assert args.command == "check"
        assert args.tier == "Verifier"
        assert args.trust == 60.0
        assert args.replay == [f"{WALLET}:trace:abc"]

    def test_user_defaults(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["attempt", "--mission", WALLET, "--user", "alice"])
        assert args.tier == "Citizen"
        assert args.trust == 25
        assert args.votes == 0

    def test_unknown_tier_rejected(self) -> None:
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["check", "--mission", WALLET, "--user", "a", "--tier", "King"])


class TestCLIExecution:
    def test_no_command_shows_help(self, run) -> None:
        code, _, _ = run()
        assert code == 0

    def test_missions(self, run) -> None:
        code, out, _ = run("missions")
        assert code == 0
        assert len(json.loads(out)) == 6

    def test_check_writes_nothing(self, run) -> None:
        code, out, _ = run(
            "check", "--mission", IDENTITY, "--user", "alice",
            "--tier", "Verifier", "--trust", "60", "--replay", WALLET,
        )
        assert code == 0
        assert json.loads(out)["is_unlocked"] is True
        _, out, _ = run("ledger")
        assert json.loads(out) == []

    def test_attempt_persists_across_invocations(self, run) -> None:
        code, out, _ = run("attempt", "--mission", WALLET, "--user", "alice", "--trust", "30")
        assert code == 0
        assert json.loads(out)["result"] == "success"

        code, out, _ = run("ledger", "--user", "alice")
        assert code == 0
        entries = json.loads(out)
        assert len(entries) == 1
        assert entries[0]["status"] == "unlocked"

    def test_blocked_attempt(self, run) -> None:
        code, out, _ = run("attempt", "--mission", WALLET, "--user", "bob", "--trust", "5")
        assert code == 0
        assert json.loads(out)["result"] == "blocked"

    def test_replay_flow(self, run) -> None:
        run("attempt", "--mission", WALLET, "--user", "alice",
            "--tier", "Verifier", "--trust", "60")
        run("attempt", "--mission", IDENTITY, "--user", "alice",
            "--tier", "Verifier", "--trust", "60")
        code, out, _ = run(
            "replay", "--mission", IDENTITY, "--user", "alice",
            "--trace", "trace:replay:1", "--prerequisite", WALLET,
        )
        assert code == 0
        assert json.loads(out)["status"] == "unlocked"

    def test_feedback_without_entry_fails(self, run) -> None:
        code, _, err = run("feedback", "--mission", WALLET, "--user", "alice", "--vote")
        assert code == 1
        assert "no prior ledger entry" in err

    def test_unknown_mission(self, run) -> None:
        code, _, err = run("attempt", "--mission", "nonexistent", "--user", "alice")
        assert code == 1
        assert "Mission not found: nonexistent" in err

    def test_stats_and_export(self, run) -> None:
        run("attempt", "--mission", WALLET, "--user", "alice", "--trust", "30")
        code, out, _ = run("stats")
        assert code == 0
        assert json.loads(out)["total_entries"] == 1
        code, out, _ = run("export")
        assert code == 0
        assert len(json.loads(out)["definitions"]) == 6
