"""Tests for compliance policy loading."""

import json

import pytest

from pedimento.compliance.policy import DEFAULT_POLICY, ChapterRange, CompliancePolicy, load_policy


def test_empty_path_returns_default():
    assert load_policy("") is DEFAULT_POLICY
    assert load_policy(None) is DEFAULT_POLICY


def test_override_keeps_unspecified_defaults(tmp_path):
    path = tmp_path / "policy.json"
    path.write_text(json.dumps({"version": "2025.1", "commercial_value_tolerance": 10, "treaty_countries": ["USA"]}))

    policy = load_policy(str(path))

    assert policy.version == "2025.1"
    assert policy.commercial_value_tolerance == 10.0
    assert policy.treaty_countries == ["USA"]
    assert policy.iva_credit_payment_forms == DEFAULT_POLICY.iva_credit_payment_forms


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_policy(str(tmp_path / "nope.json"))


def test_invalid_json(tmp_path):
    path = tmp_path / "policy.json"
    path.write_text("{not json")
    with pytest.raises(ValueError):
        load_policy(path)


def test_wrong_shape_is_value_error(tmp_path):
    path = tmp_path / "policy.json"
    path.write_text(json.dumps({"commercial_value_tolerance": "lots"}))
    # pydantic.ValidationError is a ValueError
    with pytest.raises(ValueError):
        load_policy(path)


def test_chapter_range():
    r = ChapterRange(first=50, last=63)
    assert r.contains(50)
    assert r.contains(63)
    assert not r.contains(64)
    assert not r.contains(None)


def test_default_policy_round_trips_through_json(tmp_path):
    path = tmp_path / "policy.json"
    path.write_text(DEFAULT_POLICY.model_dump_json())
    assert load_policy(path).model_dump() == CompliancePolicy().model_dump()
