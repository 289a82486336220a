import json
import logging

from rewards_engine.config import EngineConfig, JobStateConfig
from rewards_engine.log import get_logger, log
from rewards_engine.runner.metrics import FlowMetrics, RunMetrics
from rewards_engine.runner.run_flows import build_workers


class TestBuildWorkers:
    def test_wires_config_through(self, tmp_path):
        config = EngineConfig(
            base_url="https://rewards.example.test",
            session_path=str(tmp_path),
            job_state=JobStateConfig(enabled=False),
        )

        workers = build_workers(config, "someone@example.test", is_mobile=True)

        assert workers.account_email == "someone@example.test"
        assert workers.is_mobile
        assert workers.ledger.enabled is False
        assert workers.ledger.directory == tmp_path / "job-state"
        assert workers.orchestrator.clicker.max_attempts == config.interaction.max_click_attempts
        # Bundled query list is loaded for SearchOnBing
        assert "check the weather" in workers.orchestrator.handlers.queries


class TestRunMetrics:
    def test_totals_and_save(self, tmp_path):
        run = RunMetrics(account="someone@example.test")
        run.start()
        run.add_flow(FlowMetrics("daily_set", attempted=3, completed=2, remaining=1, skipped_by_ledger=1))
        run.add_flow(FlowMetrics("more_promotions", attempted=1, completed=1))
        run.finish()

        assert run.total_completed == 3
        assert run.total_remaining == 1

        out = tmp_path / "nested" / "metrics.json"
        run.save(out)
        saved = json.loads(out.read_text())
        assert saved["summary"]["skipped_by_ledger"] == 1
        assert [f["flow"] for f in saved["flows"]] == ["daily_set", "more_promotions"]

    def test_print_summary(self, capsys):
        run = RunMetrics(account="a@b.test")
        run.add_flow(FlowMetrics("daily_set", attempted=2, completed=1, passes=2))
        run.add_flow(FlowMetrics("punch_card:Parent", error="timeout"))
        run.print_summary()

        out = capsys.readouterr().out
        assert "Run Summary (a@b.test)" in out
        assert "- daily_set: 1/2 done, 2 pass(es)" in out
        assert "- punch_card:Parent: error: timeout" in out


class TestLogging:
    def test_messages_are_tagged(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="rewards_engine"):
            get_logger("quiz", is_mobile=True).info("Answered %d", 3)
            log(False, "ACTIVITY", "Skipped", "warn")

        messages = [(r.levelno, r.getMessage()) for r in caplog.records]
        assert (logging.INFO, "[MOBILE] [QUIZ] Answered 3") in messages
        assert (logging.WARNING, "[MAIN] [ACTIVITY] Skipped") in messages

    def test_level_mapping(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="rewards_engine"):
            for level in ("log", "warn", "error", "debug", "shout"):
                log(False, "MAIN", level, level)

        levels = {r.getMessage(): r.levelno for r in caplog.records}
        assert levels == {
            "[MAIN] [MAIN] log": logging.INFO,
            "[MAIN] [MAIN] warn": logging.WARNING,
            "[MAIN] [MAIN] error": logging.ERROR,
            "[MAIN] [MAIN] debug": logging.DEBUG,
            "[MAIN] [MAIN] shout": logging.INFO,
        }
