import pytest

from hornetstore.nostr import (
    Event,
    Filter,
    contains_any,
    contains_any_with_wildcard,
    is_single_letter,
    is_tag_query_tag,
    match_wildcard,
)


def _event(**overrides):
    base = dict(
        id="aa" * 32,
        pubkey="bb" * 32,
        created_at=1000,
        kind=1,
        tags=[["e", "ref"], ["p", "someone"], ["f", "app/photos/2024"]],
        content="Hello World",
        sig="cc" * 64,
    )
    base.update(overrides)
    return Event(**base)


def test_event_round_trip():
    event = _event()
    assert Event.from_dict(event.to_dict()) == event


def test_event_to_dict_keys_follow_wire_format():
    data = _event().to_dict()
    assert set(data) == {"id", "pubkey", "created_at", "kind", "tags", "content", "sig"}
    assert data["tags"] == [["e", "ref"], ["p", "someone"], ["f", "app/photos/2024"]]


def test_event_from_dict_defaults():
    event = Event.from_dict({"kind": 7})
    assert event.kind == 7
    assert event.tags == []
    assert event.content == ""


def test_tag_key():
    event = _event()
    assert event.tag_key(["e", "ref"]) == "e"
    assert event.tag_key([]) == ""


@pytest.mark.parametrize("letter", ["a", "z", "e"])
def test_single_letter_accepts_lower_case(letter):
    assert is_single_letter(letter)


@pytest.mark.parametrize("text", ["A", "ab", "", "1", "é", "#"])
def test_single_letter_rejects_others(text):
    assert not is_single_letter(text)


def test_tag_query_tag():
    assert is_tag_query_tag("#e")
    assert not is_tag_query_tag("e")
    assert not is_tag_query_tag("#E")
    assert not is_tag_query_tag("#ee")
    assert not is_tag_query_tag("##")


def test_contains_any_strips_hash_prefix():
    tags = [["e", "ref"], ["x"]]
    assert contains_any(tags, "#e", ["nope", "ref"])
    assert contains_any(tags, "e", ["ref"])
    assert not contains_any(tags, "e", ["other"])
    assert not contains_any(tags, "x", ["anything"])


def test_wildcard_only_for_f_and_d_tags():
    tags = [["f", "app/photos/2024"], ["t", "app/*"]]
    assert contains_any_with_wildcard(tags, "#f", ["app/*"])
    assert not contains_any_with_wildcard(tags, "t", ["app/x"])
    assert contains_any_with_wildcard(tags, "t", ["app/*"])
    assert not contains_any_with_wildcard(tags, "f", ["other/*"])


@pytest.mark.parametrize(
    "pattern,value",
    [
        ("a/*", "a/b/c"),
        ("*", "anything/at/all"),
        ("a/*/c", "a/b/x/c"),
        ("a/b", "a/b"),
    ],
)
def test_match_wildcard_positive(pattern, value):
    assert match_wildcard(pattern, value)


@pytest.mark.parametrize(
    "pattern,value",
    [
        ("a/*", "a"),
        ("a/b", "a/c"),
        ("a/*/c", "a/b/d"),
        ("a/b", "a/b/c"),
    ],
)
def test_match_wildcard_negative(pattern, value):
    assert not match_wildcard(pattern, value)


def test_filter_matches_fields():
    event = _event()
    assert Filter().matches(event)
    assert Filter(ids=[event.id]).matches(event)
    assert not Filter(ids=["other"]).matches(event)
    assert Filter(kinds=[1, 2]).matches(event)
    assert not Filter(kinds=[0]).matches(event)
    assert Filter(authors=[event.pubkey]).matches(event)
    assert not Filter(authors=["dd"]).matches(event)
    assert Filter(since=1000, until=1000).matches(event)
    assert not Filter(since=1001).matches(event)
    assert not Filter(until=999).matches(event)


def test_filter_empty_list_matches_nothing():
    assert not Filter(ids=[]).matches(_event())
    assert not Filter(kinds=[]).matches(_event())


def test_filter_tags():
    event = _event()
    assert Filter(tags={"e": ["ref"]}).matches(event)
    assert not Filter(tags={"e": ["missing"]}).matches(event)
    assert not Filter(tags={"q": ["ref"]}).matches(event)


def test_filter_none_event():
    assert not Filter().matches(None)


def test_filter_round_trip_from_wire():
    wire = {
        "ids": ["a"],
        "kinds": [1, 3],
        "authors": ["b"],
        "#e": ["ref"],
        "since": 10,
        "until": 20,
        "limit": 5,
        "search": "hello",
    }
    parsed = Filter.from_dict(wire)
    assert parsed.tags == {"e": ["ref"]}
    assert parsed.to_dict() == wire


def test_filter_to_dict_omits_unset():
    assert Filter().to_dict() == {}
    assert Filter.from_dict({}) == Filter()