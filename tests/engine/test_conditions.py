"""
Tests for dripflow/flow_engine/conditions.py
"""

import pytest

from dripflow.flow_engine.conditions import (
    evaluate_engagement,
    evaluate_operator,
    is_engagement_predicate,
    to_number,
)


class TestEvaluateOperator:
    """Test value operators"""

    def test_equals_is_case_insensitive_and_trimmed(self):
        """Test EQUALS ignores case and surrounding spaces"""
        assert evaluate_operator(' Acme ', 'equals', 'acme')
        assert not evaluate_operator('Acme', 'not_equals', 'ACME')

    def test_contains_on_strings_and_lists(self):
        """Test CONTAINS on strings and lists"""
        assert evaluate_operator('Hello World', 'contains', 'world')
        assert evaluate_operator(['vip', 'beta'], 'contains', 'VIP')
        assert evaluate_operator(['beta'], 'not_contains', 'vip')

    def test_not_contains_on_non_container(self):
        """Test NOT_CONTAINS when the value is not a container"""
        assert evaluate_operator(None, 'not_contains', 'vip')

    @pytest.mark.parametrize('actual,operator,expected,result', [
        (10, 'greater_than', 5, True),
        ('10', 'greater_than', '5', True),
        ('3.5', 'less_than', 4, True),
        ('abc', 'greater_than', 1, False),
        (None, 'less_than', 1, False),
        (True, 'greater_than', 0, False),
    ])
    def test_numeric_operators(self, actual, operator, expected, result):
        """Test GREATER_THAN and LESS_THAN with numeric parsing"""
        assert evaluate_operator(actual, operator, expected) is result

    def test_exists(self):
        """Test EXISTS and NOT_EXISTS"""
        assert evaluate_operator('x', 'exists', None)
        assert not evaluate_operator('', 'exists', None)
        assert evaluate_operator(None, 'not_exists', None)

    def test_in_accepts_list_or_comma_string(self):
        """Test IN with a list or a comma separated string"""
        assert evaluate_operator('Pro', 'in', ['free', 'pro'])
        assert evaluate_operator('pro', 'in', 'free, pro')
        assert evaluate_operator('team', 'not_in', ['free', 'pro'])
        assert evaluate_operator('team', 'not_in', None)

    def test_unknown_operator_is_false(self):
        """Test unknown operator evaluates false"""
        assert evaluate_operator('a', 'matches', 'a') is False


class TestEngagement:
    """Test engagement predicate evaluation"""

    def test_is_engagement_predicate(self):
        """Test engagement predicate detection"""
        assert is_engagement_predicate('opened')
        assert not is_engagement_predicate('equals')
        assert not is_engagement_predicate(None)

    def test_opened(self):
        """Test opened predicate"""
        assert evaluate_engagement('opened', {'SENT', 'OPENED'})
        assert not evaluate_engagement('opened', {'SENT'})

    def test_negative_predicates_hold_without_events(self):
        """Test negative predicates are true with no events"""
        assert evaluate_engagement('not_opened', set())
        assert evaluate_engagement('not_replied', ['SENT'])

    def test_combined_predicates(self):
        """Test combined predicates such as opened_no_reply"""
        assert evaluate_engagement('opened_no_reply', {'OPENED'})
        assert not evaluate_engagement('opened_no_reply', {'OPENED', 'REPLIED'})
        assert evaluate_engagement('clicked_no_reply', {'OPENED', 'CLICKED'})
        assert not evaluate_engagement('opened_no_click', {'OPENED', 'CLICKED'})


def test_to_number():
    """Test numeric parsing of strings and numbers"""
    assert to_number('  7 ') == 7.0
    assert to_number('seven') is None
    assert to_number(False) is None
