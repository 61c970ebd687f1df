"""
End-to-end tests for the boq_recon_main entrypoint with a scripted service.
"""

import json

import pytest

from tools.boq_recon.boq_recon import boq_recon_main, main
from utils.core.errors import OracleError


PRICE_CSV = """Item,Description,Unit Price,Unit Man Hours
BV-80,Ball valve 80mm,250,1.5
BV-80-SS,Ball valve 80mm stainless,410,1.5
DT-1000,Day tank 1000L,5200,12
"""


@pytest.fixture
def plan_txt(tmp_path):
    path = tmp_path / "plan.txt"
    path.write_text("Fuel system: BV 3in x4, day tank 1000L", encoding="utf-8")
    return str(path)


class TestExtractAction:
    async def test_drawing_extract(self, fake_oracle, plan_txt):
        oracle = fake_oracle({"extract:mep": [{"description": "Ball valve", "size": '3"', "quantity": 4}]})
        response = await boq_recon_main(
            "extract", oracle=oracle, run_id="run-1", path=plan_txt, category_set="mep"
        )

        assert response["status"] == "done"
        assert response["run_id"] == "run-1"
        result = response["result"]
        assert result["analysisType"] == "extract"
        assert result["items"][0]["size"] == '3"'
        assert result["failed_categories"] == 0

    async def test_all_categories_failed(self, fake_oracle, plan_txt):
        response = await boq_recon_main(
            "extract", oracle=fake_oracle(default=OracleError("down")), path=plan_txt
        )
        assert response["status"] == "error"
        assert response["error_type"] == "NoAttributesExtractedError"
        assert len(response["errors"]) == 6

    async def test_bad_side(self, fake_oracle, plan_txt):
        response = await boq_recon_main("extract", oracle=fake_oracle(), path=plan_txt, side="elevation")
        assert response["status"] == "error"
        assert "Unsupported side" in response["error"]

    async def test_missing_file(self, fake_oracle, tmp_path):
        response = await boq_recon_main("extract", oracle=fake_oracle(), path=str(tmp_path / "x.pdf"))
        assert response["status"] == "error"
        assert response["stage"] == "extract"


class TestCompareAction:
    async def test_compare(self, fake_oracle, drawing_items, boq_items):
        oracle = fake_oracle(
            {
                "compare": {
                    "comparisons": [
                        {"drawing_idx": 0, "boq_idx": 0, "status": "match_exact"},
                        {"drawing_idx": 1, "boq_idx": 1, "status": "match_unit_diff", "note": "NOS vs SET"},
                    ]
                }
            }
        )
        response = await boq_recon_main(
            "compare",
            oracle=oracle,
            drawing_items=[i.model_dump(exclude_none=True) for i in drawing_items],
            boq_items=boq_items,
        )

        result = response["result"]
        assert [r["status"] for r in result["rows"]] == ["match_exact", "match_unit_diff", "no_match"]
        assert result["rows"][2]["boq_item"] is None
        assert result["summary"]["match_unit_diff"] == 1

    async def test_unknown_item_field(self, fake_oracle):
        response = await boq_recon_main(
            "compare", oracle=fake_oracle(), drawing_items=[{"descr": "typo"}], boq_items=[]
        )
        assert response["status"] == "error"


class TestPriceAction:
    async def test_price(self, fake_oracle, drawing_items, tmp_path):
        price_list = tmp_path / "prices.csv"
        price_list.write_text(PRICE_CSV, encoding="utf-8")
        oracle = fake_oracle(
            {
                "price_map": {
                    "mappings": [
                        {"item_index": 0, "price_list_index": 0},
                        {"item_index": 0, "price_list_index": 1},
                        {"item_index": 1, "price_list_index": 2},
                    ]
                }
            }
        )
        response = await boq_recon_main(
            "price",
            oracle=oracle,
            items=drawing_items,
            price_list_path=str(price_list),
            selections={"0": "1"},
        )

        result = response["result"]
        assert result["candidates_per_item"] == {"0": 2, "1": 1}
        assert result["priced_items"][0]["total_price"] == "1640.00"
        assert result["totals"] == {"total_price": 6840.0, "total_manhour": 18.0}

    async def test_price_service_error(self, fake_oracle, drawing_items, tmp_path):
        price_list = tmp_path / "prices.csv"
        price_list.write_text(PRICE_CSV, encoding="utf-8")
        response = await boq_recon_main(
            "price",
            oracle=fake_oracle({"price_map": OracleError("quota")}),
            items=drawing_items,
            price_list_path=str(price_list),
        )
        assert response["status"] == "error"
        assert response["error_type"] == "OracleError"


class TestDispatch:
    async def test_unknown_action(self):
        response = await boq_recon_main("summarize")
        assert response["status"] == "error"
        assert response["stage"] == "dispatch"

    def test_cli_rejects_unknown_command(self):
        with pytest.raises(SystemExit):
            main(["summarize"])

    def test_cli_compare_without_service(self, tmp_path, capsys, monkeypatch):
        """With nothing to compare the CLI finishes without contacting the service."""
        monkeypatch.setattr("tools.boq_recon.boq_recon.setup_logging", lambda *a, **k: None)
        monkeypatch.setattr("tools.boq_recon.boq_recon.GeminiOracle", lambda: object())
        empty = tmp_path / "empty.json"
        empty.write_text(json.dumps({"items": []}), encoding="utf-8")

        assert main(["compare", str(empty), str(empty)]) == 0
        assert json.loads(capsys.readouterr().out)["result"]["rows"] == []
