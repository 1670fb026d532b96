import json

from typer.testing import CliRunner

from reflex_recon_grid.cli import app

runner = CliRunner()


def _compile(*args):
    return runner.invoke(app, ["compile", "--today", "2025-04-15", *args])


def test_compile_prints_params_for_every_tab():
    result = _compile()

    assert result.exit_code == 0, result.output
    compiled = json.loads(result.stdout)
    assert set(compiled) == {"unreconciled", "manually_reconciled", "disputed"}
    unreconciled = compiled["unreconciled"]
    assert unreconciled["manual_override_status"] == "null"
    assert unreconciled["status_in"] == "less_payment_received,more_payment_received"
    assert unreconciled["order_date_from"] == "2025-04-01"
    assert unreconciled["order_date_to"] == "2025-04-30"
    assert compiled["disputed"]["manual_override_status"] == "DISPUTED"


def test_compile_applies_preset_and_overrides(tmp_path):
    preset = tmp_path / "preset.json"
    preset.write_text(
        json.dumps({
            "version": 1,
            "filters": {
                "difference": {"kind": "numberRange", "min": "10", "max": None},
                "reason": {"kind": "enumSet", "values": ["short_payment"]},
            },
            "identifiers": ["A1", "B2"],
            "platform": "flipkart",
        }),
        encoding="utf-8",
    )

    result = _compile(str(preset), "--tab", "disputed", "--sort", "difference:desc", "-d", "last-month")

    assert result.exit_code == 0, result.output
    params = json.loads(result.stdout)["disputed"]
    assert params == {
        "diff_min": "10",
        "manual_override_status": "DISPUTED",
        "order_date_from": "2025-03-01",
        "order_date_to": "2025-03-31",
        "order_id": "A1,B2",
        "platform": "flipkart",
        "sort_by": "diff",
        "sort_order": "desc",
    }


def test_compile_custom_window_from_start_and_end():
    result = _compile("--tab", "unreconciled", "--start", "2025-01-05", "--end", "2025-02-10")

    params = json.loads(result.stdout)["unreconciled"]
    assert (params["order_date_from"], params["order_date_to"]) == ("2025-01-05", "2025-02-10")


def test_compile_summary():
    result = _compile("--tab", "manually_reconciled", "--summary")

    assert result.exit_code == 0, result.output
    assert result.stdout.startswith("manually_reconciled: order_date 2025-04-01..2025-04-30")


def test_invalid_sort_is_rejected():
    result = _compile("--sort", "difference:sideways")

    assert result.exit_code != 0


def test_unknown_tab_is_rejected():
    assert _compile("--tab", "archive").exit_code != 0


def test_unreadable_preset_is_rejected(tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")

    assert _compile(str(broken)).exit_code != 0
