"""
Tests: ComparisonEngine identical-text matching and group expansion.
"""

from requirements_hub.models.schemas import RequirementDraft
from requirements_hub.services.comparison_service import ComparisonEngine

from .conftest import make_requirement

R1_TEXT = "Leverantören ska säkerställa att all data krypteras vid lagring."


def _history(score=90):
    grouped = dict(group_id="G", similarity_score=score, category_label="Säkerhet")
    return [
        make_requirement("R1", R1_TEXT, "Säkerhet", group_representative=True, **grouped),
        make_requirement("R2", "Lagrad data ska alltid vara krypterad.", "Säkerhet", **grouped),
        make_requirement("R3", "Kryptering ska användas för all lagrad information.", "Säkerhet", **grouped),
        make_requirement("R4", "Avtalet ska kunna förlängas med ett år i taget.", "Avtal", group_id="solo"),
    ]


def _draft(text, category="Säkerhet"):
    return RequirementDraft(
        text=text, categories=["Krav", category], sheet_name="Krav", sheet_order=1, sheet_row_index=7
    )


class TestComparisonEngine:
    def test_identical_text_pulls_in_its_group(self, settings):
        draft = _draft("  leverantören SKA säkerställa att all   data krypteras vid lagring.  ")
        [result] = ComparisonEngine(settings).compare_against_history([draft], _history())

        assert result.is_identical is True
        assert result.similarity_score == 1.0
        assert [r.id for r in result.matched_exact_requirements] == ["R1"]
        assert sorted(r.id for r in result.ai_grouped_requirements) == ["R1", "R2", "R3"]
        assert result.key == draft.key

    def test_related_group_by_category_and_overlap(self, settings):
        draft = _draft("Leverantören ska säkerställa att all data krypteras vid överföring.")
        [result] = ComparisonEngine(settings).compare_against_history([draft], _history())

        assert result.is_identical is False
        assert result.similarity_score == 0.7
        assert sorted(r.id for r in result.ai_grouped_requirements) == ["R1", "R2", "R3"]

    def test_low_group_score_is_not_related(self, settings):
        draft = _draft("Leverantören ska säkerställa att all data krypteras vid överföring.")
        [result] = ComparisonEngine(settings).compare_against_history([draft], _history(score=70))

        assert result.ai_grouped_requirements is None
        assert result.similarity_score == 0.0

    def test_other_category_is_not_related(self, settings):
        draft = _draft("Leverantören ska säkerställa att all data krypteras vid överföring.", category="Drift")
        [result] = ComparisonEngine(settings).compare_against_history([draft], _history())
        assert result.ai_grouped_requirements is None

    def test_category_map_translates_draft_category(self, settings):
        draft = _draft("Leverantören ska säkerställa att all data krypteras vid överföring.", category="A. Säkerhet")
        [result] = ComparisonEngine(settings).compare_against_history(
            [draft], _history(), category_map={"A. Säkerhet": "Säkerhet"}
        )
        assert result.ai_grouped_requirements is not None

    def test_single_member_group_is_ignored(self, settings):
        draft = _draft("Avtalet ska kunna förlängas med ett år i taget.", category="Avtal")
        [result] = ComparisonEngine(settings).compare_against_history([draft], _history())

        assert result.is_identical is True
        assert result.ai_grouped_requirements is None

    def test_new_requirement(self, settings):
        draft = _draft("Systemet ska ha ett API för export av ärenden.")
        [result] = ComparisonEngine(settings).compare_against_history([draft], [])

        assert result.is_identical is False
        assert result.matched_exact_requirements == []
        assert result.similarity_score == 0.0
