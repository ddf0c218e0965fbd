"""Tests for reference range classification."""

from __future__ import annotations

import pytest

from carebook.domains.health.analysis.reference_ranges import classify_result, is_result_normal


@pytest.mark.parametrize("result,reference_range,expected", [
    # inclusive lo-hi
    ("85", "70-100", "normal"),
    ("70", "70-100", "normal"),
    ("100", "70-100", "normal"),
    ("150", "70-100", "high"),
    ("65", "70-100", "low"),
    ("4.5", "3.5 - 5.0", "normal"),
    # strict upper bound
    ("180", "<200", "normal"),
    ("200", "< 200", "high"),
    # strict lower bound
    ("55", ">40", "normal"),
    ("40", "> 40", "low"),
])
def test_classification(result, reference_range, expected):
    assert classify_result(result, reference_range) == expected


@pytest.mark.parametrize("result,reference_range", [
    (None, "70-100"),
    ("positive", "70-100"),
    ("85", None),
    ("85", ""),
    ("85", "normal"),
    ("85", "<=200"),
    ("85", "-5-10"),
    ("nan", "70-100"),
    ("NaN", "<200"),
    ("inf", "70-100"),
    ("-infinity", ">40"),
    ("1e999", "<200"),
    ("mg/dL 150", "70-100"),
])
def test_unknown(result, reference_range):
    assert classify_result(result, reference_range) == "unknown"
    assert is_result_normal(result, reference_range) is None


def test_is_result_normal():
    assert is_result_normal("85", "70-100") is True
    assert is_result_normal("150", "70-100") is False
    assert is_result_normal("10", ">40") is False


def test_whitespace_around_values():
    assert classify_result(" 85 ", " 70-100 ") == "normal"


@pytest.mark.parametrize("result,reference_range,expected", [
    ("6.5%", "4.0-6.0", "high"),
    ("150 mg/dL", "70-100", "high"),
    ("85mg/dL", "70-100", "normal"),
    ("-2.5", ">-5", "unknown"),
    ("-2.5", "0-10", "low"),
])
def test_leading_number_with_units(result, reference_range, expected):
    assert classify_result(result, reference_range) == expected


def test_non_numeric_result_never_moves_risk():
    assert is_result_normal("nan", "70-100") is None
    assert is_result_normal("NaN", "<200") is None
