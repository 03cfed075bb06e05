from requirements_hub.models.schemas import RequirementDraft
from requirements_hub.utils.requirement_key import generate_requirement_key
from requirements_hub.utils.text import normalize_text, token_overlap


class TestRequirementKey:
    def test_format(self):
        key = generate_requirement_key("Krav", 1, 4, "Systemet ska  logga\talla händelser.")
        assert key == "Krav:1:4:Systemet_ska_logga_alla_händelser."

    def test_text_truncated_before_whitespace_replacement(self):
        key = generate_requirement_key("Krav", 1, 4, "a" * 60)
        assert key == "Krav:1:4:" + "a" * 50

    def test_row_change_changes_key(self):
        assert generate_requirement_key("Krav", 1, 4, "Text") != generate_requirement_key("Krav", 1, 5, "Text")

    def test_draft_key_is_stable(self):
        draft = RequirementDraft(text="Data ska krypteras.", sheet_name="Krav", sheet_order=2, sheet_row_index=9)
        assert draft.key == draft.key == generate_requirement_key("Krav", 2, 9, "Data ska krypteras.")


class TestTextHelpers:
    def test_normalize_text(self):
        assert normalize_text("  Data  SKA\nkrypteras. ") == "data ska krypteras."
        assert normalize_text(None) == ""

    def test_token_overlap_uses_larger_word_set(self):
        # significant words: {data, krypteras, lagring} vs {data, krypteras, alltid, lagring, servern}
        overlap = token_overlap("Data ska krypteras vid lagring.", "Data ska alltid krypteras vid lagring på servern.")
        assert overlap == 3 / 5

    def test_token_overlap_of_empty_texts(self):
        assert token_overlap("", "ska") == 0.0
