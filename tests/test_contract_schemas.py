"""Contract tests: JSON schemas in specs/ against what the code emits."""

import json
from pathlib import Path
from unittest.mock import MagicMock

import jsonschema
import pytest
from jsonschema import Draft202012Validator
from jsonschema.validators import validator_for

from conftest import FakeRecordStore, tab_item
from services.song_api.service import to_response
from services.tool_invoker.run import ExternalToolInvoker, ProcessOutcome
from songdata.models import SongKey
from songdata.orchestrator import IngestionOrchestrator

SPECS_DIR = Path(__file__).parent.parent / "specs"
EXPECTED_SCHEMA_URI = "https://json-schema.org/draft/2020-12/schema"


def discover_schema_files() -> list[Path]:
    """Discover all schema files in the specs directory."""
    return sorted(SPECS_DIR.glob("*.schema.json"))


def load_schema(name: str) -> dict:
    """Load a JSON schema from the specs directory."""
    with open(SPECS_DIR / f"{name}.schema.json") as f:
        return json.load(f)


@pytest.mark.parametrize("schema_path", discover_schema_files(), ids=lambda p: p.name)
def test_schema_parses_as_draft202012(schema_path: Path) -> None:
    """Each schema file is a valid Draft 2020-12 JSON Schema."""
    schema = json.loads(schema_path.read_text(encoding="utf-8"))

    assert schema.get("$schema") == EXPECTED_SCHEMA_URI
    validator_cls = validator_for(schema)
    assert validator_cls is Draft202012Validator
    validator_cls.check_schema(schema)


def test_expected_schemas_exist() -> None:
    names = {p.name for p in discover_schema_files()}
    assert {"batch_summary.schema.json", "invocation_result.schema.json"} <= names


class TestBatchSummaryContract:
    @pytest.fixture
    def schema(self):
        return load_schema("batch_summary")

    def test_run_summary_validates(self, schema, stores, source_dir, write_page):
        retry_queue, _ = stores
        failing = SongKey("Eagles", "Hotel California", "46190")
        store = FakeRecordStore(fail_keys={failing})
        write_page(
            "page.html",
            [tab_item("Hotel California", "Eagles", 46190), tab_item("Wonderwall", "Oasis", 1)],
        )
        orchestrator = IngestionOrchestrator(
            store=store, retry_queue=retry_queue, source_dir=source_dir, sleep=lambda _s: None
        )

        for _ in range(3):
            summary = orchestrator.run()

        data = json.loads(json.dumps(summary.to_dict()))
        jsonschema.validate(data, schema)
        assert data["dead_lettered"] == [
            {"artist": "Eagles", "title": "Hotel California", "external_id": "46190"}
        ]

    def test_unknown_state_rejected(self, schema):
        summary = {
            "documents_found": 0,
            "documents_processed": 0,
            "documents_failed": 0,
            "candidates_extracted": 0,
            "inserted": 0,
            "skipped": 0,
            "errors": 0,
            "drained": 0,
            "reinserted": 0,
            "dead_lettered": [],
            "states": ["init", "exploded"],
            "pending_remaining": 0,
        }
        with pytest.raises(jsonschema.ValidationError):
            jsonschema.validate(summary, schema)


class TestInvocationResultContract:
    @pytest.fixture
    def schema(self):
        return load_schema("invocation_result")

    def _response(self, stdout: str) -> dict:
        runner = MagicMock(return_value=ProcessOutcome(0, stdout, "", 4))
        result = ExternalToolInvoker(runner=runner).search("Hotel California")
        return json.loads(to_response(result).model_dump_json())

    def test_parsed_response_validates(self, schema):
        jsonschema.validate(self._response('[{"id": 1}]'), schema)

    def test_degraded_response_validates(self, schema):
        data = self._response("unparseable")
        assert data["degraded"] is True
        jsonschema.validate(data, schema)

    def test_degraded_without_raw_output_rejected(self, schema):
        data = self._response("unparseable")
        data["raw_output"] = None
        with pytest.raises(jsonschema.ValidationError):
            jsonschema.validate(data, schema)
