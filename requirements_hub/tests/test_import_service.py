"""
Tests: workbook reading, the compare phase and the commit phase of an import.

Workbooks are built with openpyxl in a temporary directory.
"""

import asyncio
import json
from datetime import date

import pytest
from openpyxl import Workbook

from requirements_hub.exceptions import ImportValidationError, PersistenceError, SpreadsheetError
from requirements_hub.models.enums import RequirementType, UserStatus
from requirements_hub.persistence import InMemoryRequirementRepository
from requirements_hub.rules.extraction_rules import ExtractionRules
from requirements_hub.services.category_normalizer import CategoryNormalizer
from requirements_hub.services.extraction_service import RequirementExtractor
from requirements_hub.services.grouping_service import GroupingEngine
from requirements_hub.services.import_service import ImportService
from requirements_hub.services.spreadsheet_service import SpreadsheetService

from .conftest import FakeReasoningClient

MUST_TEXT = "Leverantören ska säkerställa att all data krypteras vid lagring."
SHOULD_TEXT = "Systemet bör stödja inloggning med e-legitimation för alla användare."


@pytest.fixture
def workbook_path(tmp_path):
    wb = Workbook()
    instructions = wb.active
    instructions.title = "Instruktioner"
    instructions.append(["Leverantören ska fylla i samtliga flikar i detta dokument."])
    instructions.append(["Svaren lämnas i kolumn C."])

    sheet = wb.create_sheet("Krav")
    sheet.append(["Nr", "Krav", "Svar"])
    sheet.append([None, "Informationssäkerhet", None])
    sheet.append([1, MUST_TEXT, None])
    sheet.append([2, SHOULD_TEXT, None])

    path = tmp_path / "upphandling.xlsx"
    wb.save(path)
    return path


@pytest.fixture
def empty_workbook_path(tmp_path):
    wb = Workbook()
    wb.active.title = "Instruktioner"
    sheet = wb.create_sheet("Krav")
    sheet.append(["Rubrik"])
    sheet.append(["Här finns inga krav"])
    path = tmp_path / "tom.xlsx"
    wb.save(path)
    return path


def _service(settings, repository, grouping_client=None):
    normalizer = CategoryNormalizer(repository, client=FakeReasoningClient(), settings=settings)
    engine = None
    if grouping_client is not None:
        engine = GroupingEngine(normalizer, client=grouping_client, settings=settings)
    return ImportService(
        repository,
        normalizer,
        grouping_engine=engine,
        extractor=RequirementExtractor(ExtractionRules()),
        settings=settings,
    )


class TestSpreadsheetService:
    def test_skips_instruction_sheet(self, workbook_path):
        rows = SpreadsheetService(skip_first_sheet=True).read_rows(workbook_path)
        assert {r.sheet_name for r in rows} == {"Krav"}
        assert [r.sheet_row_index for r in rows] == [0, 1, 2, 3]
        assert rows[0].sheet_order == 1

    def test_reads_bytes(self, workbook_path):
        rows = SpreadsheetService(skip_first_sheet=False).read_rows(workbook_path.read_bytes())
        assert [r.sheet_name for r in rows][:2] == ["Instruktioner", "Instruktioner"]

    def test_invalid_workbook(self):
        with pytest.raises(SpreadsheetError):
            SpreadsheetService(skip_first_sheet=True).read_rows(b"inte en arbetsbok")


class TestCompareFile:
    def test_new_file_against_empty_history(self, settings, repository, workbook_path):
        results = asyncio.run(_service(settings, repository).compare_file(workbook_path, "Region Syd"))

        assert [r.draft.text for r in results] == [MUST_TEXT, SHOULD_TEXT]
        assert [r.draft.requirement_type for r in results] == [RequirementType.MUST, RequirementType.SHOULD]
        assert results[0].key.startswith("Krav:1:2:Leverantören_ska")
        assert not any(r.is_identical for r in results)
        # compare stores nothing but the learned category mapping
        assert repository.get_all_requirements() == []
        assert [m.source_category for m in repository.get_all_category_mappings()] == ["Informationssäkerhet"]


class TestCommitFile:
    def test_commit_stores_requirements_with_edits(self, settings, repository, workbook_path):
        service = _service(settings, repository)
        compared = asyncio.run(service.compare_file(workbook_path, "Region Syd"))
        edits = {compared[0].key: {"comment": "Uppfylls enligt dialog", "status": "Granskas"}}

        summary = asyncio.run(service.commit_file(
            workbook_path, "Region Syd", edits, import_date=date(2026, 3, 2)
        ))

        assert summary.total_requirements == 2
        assert summary.new_requirements == 2
        assert summary.edits_applied == 1
        assert summary.categories == ["Informationssäkerhet"]

        stored = {r.text: r for r in repository.get_all_requirements()}
        must = stored[MUST_TEXT]
        assert must.user_comment == "Uppfylls enligt dialog"
        assert must.user_status == UserStatus.IN_REVIEW
        assert must.organizations == ["Region Syd"]
        assert must.canonical_category == "Informationssäkerhet"
        assert must.requirement_category == "Informationssäkerhet"
        assert must.categories == ["Krav", "Informationssäkerhet"]
        assert must.first_seen_date == "2026-03-02"
        assert stored[SHOULD_TEXT].user_status == UserStatus.OK

    def test_reimport_merges_identical_texts(self, settings, repository, workbook_path):
        service = _service(settings, repository)
        asyncio.run(service.commit_file(workbook_path, "Region Syd", import_date=date(2026, 3, 2)))
        summary = asyncio.run(service.commit_file(workbook_path, "Region Nord", import_date=date(2026, 4, 1)))

        assert summary.new_requirements == 0
        assert summary.merged_requirements == 2
        stored = repository.get_all_requirements()
        assert len(stored) == 2
        for req in stored:
            assert req.occurrences == 2
            assert req.organizations == ["Region Syd", "Region Nord"]
            assert req.dates == ["2026-03-02", "2026-04-01"]
            assert req.last_seen_date == "2026-04-01"
            assert req.is_new is False

    def test_grouping_runs_after_import(self, settings, repository, workbook_path):
        def reply(_system, user):
            payload = json.loads(user[user.index("{"):user.index("Svara endast")].strip())
            ids = [r["id"] for r in payload["requirements"]]
            return json.dumps({
                "groups": [{"representativeId": ids[0], "members": ids, "similarityScore": 82}],
                "ungroupedRequirements": [],
            })

        service = _service(settings, repository, FakeReasoningClient(responder=reply))
        summary = asyncio.run(service.commit_file(workbook_path, "Region Syd"))

        assert summary.ai_groups_found == 1
        stored = repository.get_all_requirements()
        assert len({r.group_id for r in stored}) == 1
        assert sum(r.group_representative for r in stored) == 1

    def test_grouping_failure_does_not_fail_import(self, settings, workbook_path):
        class NoClearRepository(InMemoryRequirementRepository):
            def clear_all_groupings(self):
                raise PersistenceError("database unavailable")

        repository = NoClearRepository()
        client = FakeReasoningClient(replies=['{"groups": [], "ungroupedRequirements": []}'])
        summary = asyncio.run(_service(settings, repository, client).commit_file(workbook_path, "Region Syd"))

        assert summary.new_requirements == 2
        assert summary.ai_groups_found == 0
        assert len(repository.get_all_requirements()) == 2

    def test_workbook_without_requirements(self, settings, repository, empty_workbook_path):
        with pytest.raises(ImportValidationError):
            asyncio.run(_service(settings, repository).commit_file(empty_workbook_path, "Region Syd"))

    def test_organization_required(self, settings, repository, workbook_path):
        with pytest.raises(ImportValidationError):
            asyncio.run(_service(settings, repository).commit_file(workbook_path, "  "))
