"""Tests for CLI commands."""

import json
import re

import pytest
from typer.testing import CliRunner

from rsuledger.cli import app

runner = CliRunner()


class TestHelp:
    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "rsuledger" in result.output

    @pytest.mark.parametrize(
        "command",
        [
            ["grant", "--help"],
            ["grant", "add", "--help"],
            ["grant", "change-plan", "--help"],
            ["grant", "update", "--help"],
            ["sale", "record", "--help"],
            ["price", "import", "--help"],
            ["tax", "timing", "--help"],
            ["timeline", "--help"],
            ["validate", "--help"],
            ["vest", "--help"],
            ["vest", "calendar", "--help"],
            ["summary", "--help"],
        ],
    )
    def test_subcommand_help(self, command):
        result = runner.invoke(app, command)
        assert result.exit_code == 0


class TestCommands:
    @pytest.fixture(autouse=True)
    def _db(self, tmp_path):
        self.db = str(tmp_path / "cli.db")

    def invoke(self, *args: str):
        return runner.invoke(app, ["--db", self.db, "--user", "alice", *args])

    def add_grant(self) -> str:
        result = self.invoke(
            "grant", "add", "acme",
            "--date", "2020-01-15", "--shares", "1000", "--value", "50000",
            "--as-of", "2022-01-20",
        )
        assert result.exit_code == 0, result.output
        return re.search(r"Created grant (\S+)", result.output).group(1)

    def test_plans(self):
        result = self.invoke("plans")
        assert result.exit_code == 0
        assert "semi-annual-4yr" in result.output

    def test_grant_and_sale_flow(self):
        grant_id = self.add_grant()

        result = self.invoke(
            "sale", "record", grant_id, "--shares", "100", "--price", "80", "--date", "2022-01-20"
        )
        assert result.exit_code == 0, result.output
        assert "Recorded sale" in result.output
        assert "3,250.00" in result.output  # wage income tax on 5,000 original value

        result = self.invoke("grant", "show", grant_id, "--as-of", "2022-01-20")
        assert result.exit_code == 0, result.output
        assert "Available:     300" in result.output

        result = self.invoke("tax", "summary", "2022")
        assert result.exit_code == 0
        assert "Shares sold:       100" in result.output

    def test_oversell_exits_with_error(self):
        grant_id = self.add_grant()
        result = self.invoke(
            "sale", "record", grant_id, "--shares", "401", "--price", "80", "--date", "2022-01-20"
        )
        assert result.exit_code == 1
        assert "Insufficient shares" in result.output

    def test_unknown_grant(self):
        result = self.invoke("grant", "show", "missing")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_unknown_plan(self):
        result = self.invoke(
            "grant", "add", "ACME", "--date", "2020-01-15", "--shares", "10",
            "--value", "100", "--plan", "weekly",
        )
        assert result.exit_code == 1
        assert "Unknown vesting plan" in result.output

    def test_bad_date(self):
        result = self.invoke(
            "grant", "add", "ACME", "--date", "15/01/2020", "--shares", "10", "--value", "100"
        )
        assert result.exit_code == 2

    def test_prices(self, tmp_path):
        csv_path = tmp_path / "acme.csv"
        csv_path.write_text("date,price\n2024-01-02,100\n2024-01-05,110\n")
        result = self.invoke("price", "import", "acme", str(csv_path))
        assert result.exit_code == 0, result.output
        assert "Imported 2 prices for ACME" in result.output

        result = self.invoke("price", "show", "ACME", "--date", "2024-01-04")
        assert result.exit_code == 0
        assert "ACME: 100.00 (from 2024-01-02)" in result.output

        result = self.invoke("price", "set", "ACME", "120", "--date", "2024-01-05")
        assert result.exit_code == 0
        result = self.invoke("price", "show", "ACME")
        assert "ACME: 120.00" in result.output

    def test_missing_price_exits_with_error(self):
        result = self.invoke("price", "show", "NOPE")
        assert result.exit_code == 1
        assert "No price data" in result.output

    def test_change_plan(self):
        grant_id = self.add_grant()
        result = self.invoke(
            "grant", "change-plan", grant_id, "semi-annual-4yr", "--as-of", "2022-01-20", "--yes"
        )
        assert result.exit_code == 0, result.output
        assert "vested 400 -> 500" in result.output

    def test_change_plan_declined(self):
        grant_id = self.add_grant()
        result = runner.invoke(
            app,
            ["--db", self.db, "--user", "alice", "grant", "change-plan", grant_id,
             "semi-annual-4yr", "--as-of", "2022-01-20"],
            input="n\n",
        )
        assert result.exit_code == 0
        assert "Moved grant" not in result.output

    def test_vest(self):
        self.add_grant()
        result = self.invoke("vest", "--as-of", "2030-01-01")
        assert result.exit_code == 0, result.output
        assert "Vested 600 shares in 12 tranches across 1 grants (1 fully vested)" in result.output

    def test_timeline_json(self):
        assert self.invoke("price", "set", "ACME", "50", "--date", "2020-01-01").exit_code == 0
        self.add_grant()
        result = self.invoke(
            "timeline", "--as-of", "2022-03-01", "--start", "2022-01-01", "--end", "2022-03-01", "--json"
        )
        assert result.exit_code == 0, result.output
        points = json.loads(result.output)
        assert [p["month_key"] for p in points] == ["2022-01", "2022-02", "2022-03"]
        assert points[0]["total_shares"] == 400

    def test_validate(self):
        self.add_grant()
        result = self.invoke("validate", "--as-of", "2022-01-20")
        assert result.exit_code == 0, result.output
        assert "OK" in result.output

    def test_users_are_isolated(self):
        self.add_grant()
        result = runner.invoke(app, ["--db", self.db, "--user", "bob", "grant", "list"])
        assert result.exit_code == 0
        assert "No grants found." in result.output

    def test_tax_summary_lists_estimated_payments(self):
        grant_id = self.add_grant()
        self.invoke("sale", "record", grant_id, "--shares", "100", "--price", "80", "--date", "2022-01-20")
        result = self.invoke("tax", "summary", "2022")
        assert result.exit_code == 0, result.output
        assert "Estimated payments:" in result.output
        assert "Q1 due 2023-04-30: 1,000.00" in result.output
        assert "Q4 due 2024-01-31: 1,000.00" in result.output

    def test_grant_update(self):
        grant_id = self.add_grant()
        result = self.invoke("grant", "update", grant_id, "--shares", "2000", "--as-of", "2022-01-20")
        assert result.exit_code == 0, result.output
        assert f"Updated grant {grant_id}" in result.output
        assert "2000 ACME shares over 20 tranches (quarterly-5yr)" in result.output

        result = self.invoke("grant", "show", grant_id, "--as-of", "2022-01-20")
        assert "Vested:        800" in result.output

    def test_grant_update_rejects_oversold_schedule(self):
        grant_id = self.add_grant()
        self.invoke("sale", "record", grant_id, "--shares", "400", "--price", "80", "--date", "2022-01-20")
        result = self.invoke("grant", "update", grant_id, "--shares", "500", "--as-of", "2022-01-20")
        assert result.exit_code == 1
        assert "total_shares" in result.output

    def test_vest_calendar(self):
        self.add_grant()
        result = self.invoke("vest", "calendar", "--as-of", "2022-01-20", "--months", "6")
        assert result.exit_code == 0, result.output
        assert "2022-04-15" in result.output
        assert "2022-07-15" in result.output
        assert "2022-10-15" not in result.output

    def test_vest_calendar_empty(self):
        self.add_grant()
        result = self.invoke("vest", "calendar", "--as-of", "2030-01-01")
        assert result.exit_code == 0
        assert "No upcoming vesting." in result.output

    def test_vest_stats(self):
        self.add_grant()
        result = self.invoke("vest", "stats", "--as-of", "2022-01-20")
        assert result.exit_code == 0, result.output
        assert "400 vested, 600 unvested, 40.00%" in result.output
        assert "Next vest:         2022-04-15" in result.output
        assert "No stored price for ACME" in result.output

    def test_summary(self):
        assert self.invoke("price", "set", "ACME", "80", "--date", "2022-01-01").exit_code == 0
        grant_id = self.add_grant()
        self.invoke("sale", "record", grant_id, "--shares", "100", "--price", "80", "--date", "2022-01-20")
        result = self.invoke("summary", "--as-of", "2022-01-20")
        assert result.exit_code == 0, result.output
        assert "Current value:     80,000.00" in result.output
        assert "Available shares:  300 (24,000.00)" in result.output
        assert "Estimated tax:     12,000.00" in result.output
        assert "Recent sales:      1 (net 4,000.00, last on 2022-01-20)" in result.output
