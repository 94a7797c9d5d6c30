import pytest

from flagproviders.core import ErrorCode, Reason, ResolutionError
from flagproviders.fromenv import (
    Criteria,
    FromEnvProvider,
    StoredFlag,
    Variant,
    parse_stored_flag,
)


def _yellow_flag(extra_value, yellow_value, not_yellow_value):
    return StoredFlag(
        default_variant="not-yellow",
        variants=[
            Variant(
                name="yellow-with-extras",
                value=extra_value,
                criteria=[Criteria("color-extra", "blue"), Criteria("color", "yellow")],
            ),
            Variant(name="yellow", value=yellow_value, criteria=[Criteria("color", "yellow")]),
            Variant(
                name="not-yellow", value=not_yellow_value, criteria=[Criteria("color", "not yellow")]
            ),
        ],
    )


def test_metadata_and_hooks():
    p = FromEnvProvider()
    assert p.metadata().name == "from-env-flag-evaluator"
    assert p.hooks() == []


def test_with_flag_to_env_mapper(monkeypatch):
    def mapper(key):
        return "MY_" + key.replace("-", "_").upper()

    flag = StoredFlag(
        default_variant="not-yellow",
        variants=[
            Variant(name="yellow", value=True, criteria=[Criteria("color", "yellow")]),
            Variant(name="not-yellow", value=False, criteria=[Criteria("color", "not yellow")]),
        ],
    )
    monkeypatch.setenv(mapper("some-flag-enabled"), flag.to_json())
    p = FromEnvProvider(flag_to_env_mapper=mapper)
    res = p.boolean_evaluation(
        "some-flag-enabled", False, {"color": "yellow", "targetingKey": "user1"}
    )
    assert res.error is None
    assert res.value is True
    assert res.variant == "yellow"


BOOL_CASES = {
    "bool happy path": (
        False,
        True,
        Reason.TARGETING_MATCH,
        "yellow",
        None,
        {"color": "yellow", "targetingKey": "user1"},
        _yellow_flag(False, True, False),
    ),
    "flag is not bool": (
        True,
        True,
        Reason.ERROR,
        "",
        ResolutionError(ErrorCode.TYPE_MISMATCH, ""),
        {"color": "yellow"},
        StoredFlag("default", [Variant(name="default", value="false")]),
    ),
    "variant does not exist": (
        True,
        True,
        Reason.ERROR,
        "",
        ResolutionError(ErrorCode.PARSE_ERROR, ""),
        {"color": "yellow"},
        StoredFlag(
            "not-default",
            [Variant(name="default", value=False, criteria=[Criteria("color", "not yellow")])],
        ),
    ),
    "hit default value": (
        False,
        True,
        Reason.DEFAULT,
        "default",
        None,
        {"color": "yellow"},
        StoredFlag(
            "default",
            [Variant(name="default", value=True, criteria=[Criteria("color", "not yellow")])],
        ),
    ),
    "targeting key match": (
        True,
        True,
        Reason.TARGETING_MATCH,
        "targeting_key",
        None,
        {"color": "yellow", "targetingKey": "user1"},
        StoredFlag(
            "default",
            [
                Variant(
                    name="targeting_key_2",
                    value=True,
                    targeting_key="user2",
                    criteria=[Criteria("color", "yellow")],
                ),
                Variant(
                    name="targeting_key",
                    value=True,
                    targeting_key="user1",
                    criteria=[Criteria("color", "yellow")],
                ),
                Variant(name="default", value=False, criteria=[Criteria("color", "not yellow")]),
            ],
        ),
    ),
}


@pytest.mark.parametrize("case", list(BOOL_CASES), ids=list(BOOL_CASES))
def test_bool_from_env(monkeypatch, case):
    default, expected, reason, variant, error, ctx, flag = BOOL_CASES[case]
    monkeypatch.setenv("MY_BOOL_FLAG", flag.to_json())
    res = FromEnvProvider().boolean_evaluation("MY_BOOL_FLAG", default, ctx)
    assert res.value == expected
    assert res.reason == reason
    assert res.variant == variant
    assert res.error == error


def test_string_happy_path(monkeypatch):
    flag = _yellow_flag("not yellow", "yellow", "not yellow")
    monkeypatch.setenv("MY_STRING_FLAG", flag.to_json())
    res = FromEnvProvider().string_evaluation("MY_STRING_FLAG", "default value", {"color": "yellow"})
    assert res.value == "yellow"
    assert res.reason == Reason.TARGETING_MATCH
    assert res.variant == "yellow"
    assert res.error is None


def test_flag_is_not_string(monkeypatch):
    flag = StoredFlag("default", [Variant(name="default", value=True)])
    monkeypatch.setenv("MY_STRING_FLAG", flag.to_json())
    res = FromEnvProvider().string_evaluation("MY_STRING_FLAG", "default value", {"color": "yellow"})
    assert res.value == "default value"
    assert res.reason == Reason.ERROR
    assert res.variant == ""
    assert res.error == ResolutionError(ErrorCode.TYPE_MISMATCH, "")


def test_float_happy_path(monkeypatch):
    monkeypatch.setenv("MY_FLOAT_FLAG", _yellow_flag(100, 10, 100).to_json())
    res = FromEnvProvider().float_evaluation("MY_FLOAT_FLAG", 1.0, {"color": "yellow"})
    assert res.value == 10.0
    assert isinstance(res.value, float)
    assert res.reason == Reason.TARGETING_MATCH
    assert res.variant == "yellow"
    assert res.error is None


def test_flag_is_not_float(monkeypatch):
    flag = StoredFlag("default", [Variant(name="default", value="10")])
    monkeypatch.setenv("MY_FLOAT_FLAG", flag.to_json())
    res = FromEnvProvider().float_evaluation("MY_FLOAT_FLAG", 1.0, {"color": "yellow"})
    assert res.value == 1.0
    assert res.reason == Reason.ERROR
    assert res.variant == ""
    assert res.error == ResolutionError(ErrorCode.TYPE_MISMATCH, "")


def test_int_happy_path(monkeypatch):
    monkeypatch.setenv("MY_INT_FLAG", _yellow_flag(100, 10, 100).to_json())
    res = FromEnvProvider().int_evaluation("MY_INT_FLAG", 1, {"color": "yellow"})
    assert res.value == 10
    assert isinstance(res.value, int)
    assert res.reason == Reason.TARGETING_MATCH
    assert res.variant == "yellow"
    assert res.error is None


def test_flag_is_not_int(monkeypatch):
    flag = StoredFlag("default", [Variant(name="default", value="10")])
    monkeypatch.setenv("MY_INT_FLAG", flag.to_json())
    res = FromEnvProvider().int_evaluation("MY_INT_FLAG", 1, {"color": "yellow"})
    assert res.value == 1
    assert res.reason == Reason.ERROR
    assert res.variant == ""
    assert res.error == ResolutionError(ErrorCode.TYPE_MISMATCH, "")


def test_object_happy_path(monkeypatch):
    flag = _yellow_flag({"key": "value3"}, {"key": "value2"}, 100)
    monkeypatch.setenv("MY_OBJECT_FLAG", flag.to_json())
    res = FromEnvProvider().object_evaluation(
        "MY_OBJECT_FLAG", {"key": "value"}, {"color": "yellow"}
    )
    assert res.value == {"key": "value2"}
    assert res.reason == Reason.TARGETING_MATCH
    assert res.variant == "yellow"
    assert res.error is None


def test_missing_env_variable(monkeypatch):
    monkeypatch.delenv("NOT_THERE_FLAG", raising=False)
    res = FromEnvProvider().boolean_evaluation("NOT_THERE_FLAG", True, {})
    assert res.value is True
    assert res.reason == Reason.ERROR
    assert res.error == ResolutionError(
        ErrorCode.FLAG_NOT_FOUND, "key NOT_THERE_FLAG not found in environment variables"
    )


def test_invalid_json_is_parse_error(monkeypatch):
    monkeypatch.setenv("BROKEN_FLAG", "{not json")
    res = FromEnvProvider().string_evaluation("BROKEN_FLAG", "d", {})
    assert res.value == "d"
    assert res.error_code() is ErrorCode.PARSE_ERROR


def test_parse_stored_flag_round_trip():
    flag = _yellow_flag(1, 2, 3)
    assert parse_stored_flag(flag.to_json()) == flag


def test_parse_stored_flag_rejects_wrong_shape():
    with pytest.raises(ResolutionError) as info:
        parse_stored_flag('{"variants": "nope"}')
    assert info.value.code is ErrorCode.PARSE_ERROR


def test_evaluate_without_default_raises():
    flag = StoredFlag("missing", [Variant(name="a", value=1, criteria=[Criteria("x", "y")])])
    with pytest.raises(ResolutionError) as info:
        flag.evaluate({})
    assert info.value == ResolutionError(ErrorCode.PARSE_ERROR, "")


def test_evaluate_bool_criteria_does_not_match_number():
    flag = StoredFlag(
        "fallback",
        [
            Variant(name="on", value="on", criteria=[Criteria("flag", True)]),
            Variant(name="fallback", value="off", criteria=[Criteria("never", "x")]),
        ],
    )
    assert flag.evaluate({"flag": 1}) == ("fallback", Reason.DEFAULT, "off")
    assert flag.evaluate({"flag": True}) == ("on", Reason.TARGETING_MATCH, "on")