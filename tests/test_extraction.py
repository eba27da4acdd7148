import pytest

from postbuy.extraction import FieldRule, TextExtractionEngine, extract_risk_factors


def test_separate_lines():
    text = "Property report\n4/10 Flood Factor\n2/10 Fire Factor\nShare"
    assert extract_risk_factors(text) == {
        "flood": "4/10",
        "fire": "2/10",
        "wind": None,
        "air": None,
        "heat": None,
    }


def test_single_joined_line_uses_fallback_pass():
    result = extract_risk_factors("1/10 Fire Factor 2/10 Wind Factor")
    assert result["fire"] == "1/10"
    assert result["wind"] == "2/10"
    assert result["flood"] is None
    assert result["air"] is None
    assert result["heat"] is None


def test_first_match_per_field_wins():
    text = "Flood Factor 3/10\nFlood Factor 9/10"
    assert extract_risk_factors(text)["flood"] == "3/10"


def test_keyword_is_case_insensitive_and_whole_word():
    text = "HEAT FACTOR 5 / 10\nrepair estimate 8/10"
    result = extract_risk_factors(text)
    assert result["heat"] == "5/10"
    assert result["air"] is None


def test_all_five_factors_on_one_line():
    text = "3/10 Flood Factor 1/10 Fire Factor 2/10 Wind Factor 4/10 Air Factor 6/10 Heat Factor"
    assert extract_risk_factors(text) == {
        "flood": "3/10",
        "fire": "1/10",
        "wind": "2/10",
        "air": "4/10",
        "heat": "6/10",
    }


@pytest.mark.parametrize("text", ["", None, "nothing to see here"])
def test_empty_or_unrecognized_text_leaves_every_field_unset(text):
    assert set(extract_risk_factors(text).values()) == {None}


def test_custom_rules_and_denominator():
    engine = TextExtractionEngine([FieldRule("noise", "noise")], denominator=5)
    assert engine.extract("Noise score 4/5") == {"noise": "4/5"}


def test_engine_requires_rules():
    with pytest.raises(ValueError):
        TextExtractionEngine([])


def test_line_naming_two_fields_goes_to_the_first_keyword():
    result = extract_risk_factors("Flood Factor 4/10 (fire nearby)")
    assert result["flood"] == "4/10"
    assert result["fire"] is None
