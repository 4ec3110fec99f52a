import pytest

from planning_poker.services.errors import ProtocolError
from planning_poker.utils.validation import (
    is_valid_final_value,
    is_valid_ticket_index,
    is_valid_vote,
    normalize_vote,
    sanitize_display_name,
    sanitize_free_text,
    validate_ticket_source_config,
)


def test_display_name_strips_tags_and_whitespace():
    assert sanitize_display_name("  <b>Ada</b> ") == "Ada"


@pytest.mark.parametrize("raw", ["", "   ", "<i></i>", None, 42])
def test_display_name_rejects_empty_or_non_string(raw):
    with pytest.raises(ProtocolError):
        sanitize_display_name(raw)


def test_display_name_length_bound():
    assert sanitize_display_name("x" * 50) == "x" * 50
    with pytest.raises(ProtocolError) as excinfo:
        sanitize_display_name("x" * 51)
    assert "50" in excinfo.value.message


def test_numeric_and_string_votes_are_equivalent():
    assert normalize_vote(13) == 13
    assert normalize_vote("13") == 13
    assert normalize_vote(13.0) == 13
    assert normalize_vote(" 5 ") == 5
    assert is_valid_vote("13") and is_valid_vote(13)


def test_sentinel_votes_are_accepted():
    assert normalize_vote("?") == "?"
    assert normalize_vote("∞") == "∞"


@pytest.mark.parametrize("raw", [4, "4", 2.5, True, None, "", "infinity", 34, [5]])
def test_votes_outside_the_deck_are_rejected(raw):
    assert not is_valid_vote(raw)


def test_final_value_bounds():
    assert is_valid_final_value(None)
    assert is_valid_final_value(0)
    assert is_valid_final_value(1000)
    assert is_valid_final_value(2.5)
    assert not is_valid_final_value(-1)
    assert not is_valid_final_value(1000.5)
    assert not is_valid_final_value(True)
    assert not is_valid_final_value("5")
    assert not is_valid_final_value(float("nan"))


def test_ticket_index_bounds():
    assert is_valid_ticket_index(0, 3)
    assert is_valid_ticket_index(2, 3)
    assert not is_valid_ticket_index(3, 3)
    assert not is_valid_ticket_index(-1, 3)
    assert not is_valid_ticket_index(99, 3)
    assert not is_valid_ticket_index(0, 0)
    assert not is_valid_ticket_index(True, 3)
    assert not is_valid_ticket_index("1", 3)


def test_free_text_strips_and_truncates():
    assert sanitize_free_text("<script>x</script>hello world", 5) == "xhell"
    assert sanitize_free_text(None) == ""


def test_ticket_source_config_is_normalised():
    config = validate_ticket_source_config(
        {
            "domain": " https://example.atlassian.net/ ",
            "email": "host@example.com",
            "apiToken": "tok",
            "projectKey": "POKER",
            "storyPointsField": "",
        }
    )
    assert config.domain == "example.atlassian.net"
    assert config.project_key == "POKER"
    assert config.story_points_field is None
    assert "tok" not in repr(config)


@pytest.mark.parametrize(
    "overrides",
    [
        {"domain": ""},
        {"domain": "example.com/evil path"},
        {"email": "not-an-email"},
        {"apiToken": "   "},
        {"projectKey": "1BAD"},
        {"storyPointsField": "field with spaces"},
    ],
)
def test_ticket_source_config_rejections(overrides):
    raw = {"domain": "example.atlassian.net", "email": "a@b.c", "apiToken": "tok"}
    raw.update(overrides)
    with pytest.raises(ProtocolError):
        validate_ticket_source_config(raw)
