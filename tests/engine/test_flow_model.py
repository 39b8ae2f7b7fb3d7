"""
Tests for dripflow/flow_engine/flow_model.py
"""

import pytest
from types import SimpleNamespace

from dripflow.exceptions import FlowValidationError
from dripflow.flow_engine import flow_model
from dripflow.flow_engine.flow_model import (
    END,
    StepKind,
    normalize_kind,
    resolve,
    resolve_definition,
    validate,
)


def graph_definition():
    return {
        'nodes': [
            {'id': 'trigger', 'type': 'trigger', 'data': {}},
            {'id': 'welcome', 'type': 'email', 'data': {'subject': 'Welcome'}},
            {'id': 'wait', 'type': 'delay', 'data': {'config': {'duration': 1, 'unit': 'days'}}},
            {'id': 'opened', 'type': 'condition', 'data': {'operator': 'opened'}},
            {'id': 'thanks', 'type': 'email', 'data': {'subject': 'Thanks'}},
            {'id': 'nudge', 'type': 'email', 'data': {'subject': 'Did you see?'}},
        ],
        'edges': [
            {'source': 'trigger', 'target': 'welcome'},
            {'source': 'welcome', 'target': 'wait'},
            {'source': 'wait', 'target': 'opened'},
            {'source': 'opened', 'target': 'thanks', 'sourceHandle': 'true'},
            {'source': 'opened', 'target': 'nudge', 'sourceHandle': 'false'},
        ],
    }


class TestNormalizeKind:
    """Test step kind normalization"""

    def test_aliases_are_case_insensitive(self):
        """Test kind aliases ignore case"""
        assert normalize_kind('Email') == StepKind.MESSAGE.value
        assert normalize_kind('WAIT') == StepKind.DELAY.value
        assert normalize_kind('apiRequest') == StepKind.EXTERNAL_CALL.value

    def test_unknown_kind(self):
        """Test unknown kind normalizes to None"""
        assert normalize_kind('sms') is None
        assert normalize_kind(None) is None


class TestGraphEncoding:
    """Test graph encoding"""

    def test_trigger_node_is_not_a_step(self):
        """Test trigger nodes are not steps"""
        resolved = resolve_definition('graph', graph_definition())

        assert 'trigger' not in resolved.steps
        assert resolved.order == ['welcome', 'wait', 'opened', 'thanks', 'nudge']

    def test_entry_is_trigger_edge_target(self):
        """Test entry step is the target of the trigger edge"""
        resolved = resolve_definition('graph', graph_definition())
        assert resolved.entry_step_id == 'welcome'

    def test_edges_become_next_and_branches(self):
        """Test edges become next and labelled branches"""
        resolved = resolve_definition('graph', graph_definition())

        assert resolved.get('welcome').next == 'wait'
        assert resolved.get('opened').branches == {'true': 'thanks', 'false': 'nudge'}
        assert resolved.get('opened').next is None

    def test_nested_config_is_merged(self):
        """Test nested data config is merged"""
        resolved = resolve_definition('graph', graph_definition())
        assert resolved.get('wait').config['duration'] == 1

    def test_entry_without_trigger_is_first_node_without_incoming_edges(self):
        """Test entry fallback without a trigger node"""
        definition = graph_definition()
        definition['nodes'] = definition['nodes'][1:]
        definition['edges'] = definition['edges'][1:]

        resolved = resolve_definition('graph', definition)
        assert resolved.entry_step_id == 'welcome'

    def test_fallthrough_is_positional_successor(self):
        """Test graph fallthrough is the positional successor"""
        definition = graph_definition()
        definition['edges'] = [e for e in definition['edges'] if e.get('sourceHandle') != 'false']

        resolved = resolve_definition('graph', definition)
        step = resolved.get('opened')
        assert 'false' not in step.branches
        assert resolved.fallthrough(step) == 'thanks'

    def test_predecessors(self):
        """Test predecessor lookup"""
        resolved = resolve_definition('graph', graph_definition())
        assert resolved.predecessors('opened') == ['wait']
        assert resolved.predecessors('thanks') == ['opened']


class TestLinearEncoding:
    """Test linear encoding"""

    def test_leading_trigger_is_skipped(self):
        """Test a leading trigger step is skipped"""
        resolved = resolve_definition('linear', {'steps': [
            {'id': 't', 'type': 'trigger'},
            {'id': 's1', 'type': 'email', 'subject': 'Hi'},
        ]})

        assert resolved.order == ['s1']
        assert resolved.entry_step_id == 's1'

    def test_implicit_next_and_explicit_override(self):
        """Test implicit next step and nextStepId override"""
        resolved = resolve_definition('linear', {'steps': [
            {'id': 's1', 'type': 'email', 'subject': 'Hi'},
            {'id': 's2', 'type': 'action', 'nextStepId': 's4'},
            {'id': 's3', 'type': 'action'},
            {'id': 's4', 'type': 'action'},
        ]})

        assert resolved.get('s1').next == 's2'
        assert resolved.get('s2').next == 's4'
        assert resolved.get('s4').next is None

    @pytest.mark.parametrize('value,expected', [
        (['s3'], 's3'),
        ([{'id': 's3'}], 's3'),
        ('s3', 's3'),
        ('END', END),
    ])
    def test_branch_target_forms(self, value, expected):
        """Test every accepted branch target form"""
        resolved = resolve_definition('linear', {'steps': [
            {'id': 's1', 'type': 'condition', 'trueBranch': value},
            {'id': 's2', 'type': 'action'},
            {'id': 's3', 'type': 'action'},
        ]})
        assert resolved.get('s1').branches == {'true': expected}

    def test_empty_branch_falls_through_to_next(self):
        """Test an empty branch falls through to the next step"""
        resolved = resolve_definition('linear', {'steps': [
            {'id': 's1', 'type': 'condition', 'condition': {'trueBranch': ['s3'], 'falseBranch': []}},
            {'id': 's2', 'type': 'action'},
            {'id': 's3', 'type': 'action'},
        ]})
        step = resolved.get('s1')

        assert step.branches == {'true': 's3'}
        assert resolved.fallthrough(step) == 's2'

    def test_encoding_inferred_from_steps_key(self):
        """Test linear encoding is inferred from the steps key"""
        resolved = resolve_definition(None, {'steps': [{'id': 's1', 'type': 'email'}]})
        assert resolved.encoding == 'linear'


class TestValidate:
    """Test activation validation"""

    def test_valid_graph(self):
        """Test a valid graph passes"""
        validate(resolve_definition('graph', graph_definition()), 'flow-1')

    def test_empty_flow(self):
        """Test an empty flow is rejected"""
        with pytest.raises(FlowValidationError) as exc:
            validate(resolve_definition('linear', {'steps': []}))
        assert 'flow has no steps' in exc.value.problems

    def test_reports_every_problem(self):
        """Test every problem is reported together"""
        resolved = resolve_definition('linear', {'steps': [
            {'id': 's1', 'type': 'sms'},
            {'id': 's2', 'type': 'action', 'nextStepId': 'missing'},
            {'id': 's2', 'type': 'action'},
        ]})

        with pytest.raises(FlowValidationError) as exc:
            validate(resolved, 'flow-1')

        problems = exc.value.problems
        assert any('unknown step kind' in p for p in problems)
        assert any('unknown step missing' in p for p in problems)
        assert any('duplicate step id: s2' in p for p in problems)

    def test_instant_cycle_is_rejected(self):
        """Test a cycle without delay or condition is rejected"""
        resolved = resolve_definition('linear', {'steps': [
            {'id': 'a', 'type': 'action', 'nextStepId': 'b'},
            {'id': 'b', 'type': 'action', 'nextStepId': 'a'},
        ]})

        with pytest.raises(FlowValidationError) as exc:
            validate(resolved)
        assert any('cycle' in p for p in exc.value.problems)

    def test_cycle_through_delay_is_allowed(self):
        """Test a cycle through a delay is allowed"""
        resolved = resolve_definition('linear', {'steps': [
            {'id': 'a', 'type': 'action'},
            {'id': 'd', 'type': 'delay', 'duration': 1, 'unit': 'days', 'nextStepId': 'a'},
        ]})
        validate(resolved)

    def test_unknown_branch_target(self):
        """Test branch pointing to an unknown step"""
        definition = graph_definition()
        definition['edges'][-1]['target'] = 'ghost'

        with pytest.raises(FlowValidationError) as exc:
            validate(resolve_definition('graph', definition))
        assert any("branch 'false'" in p for p in exc.value.problems)


class TestResolveCache:
    """Test resolved flow cache"""

    def test_cached_per_version(self):
        """Test the cache is keyed by flow version"""
        flow_model.clear_cache()
        flow = SimpleNamespace(id='f1', version=1, encoding='graph', definition=graph_definition())

        first = resolve(flow)
        assert resolve(flow) is first

        flow.version = 2
        flow.definition = {'nodes': [], 'edges': []}
        assert resolve(flow) is not first
        assert resolve(flow).steps == {}
        flow_model.clear_cache()

    def test_cache_evicts_least_recently_used(self, monkeypatch):
        """Cache holds at most CACHE_SIZE flows; the oldest unused one goes first"""
        flow_model.clear_cache()
        monkeypatch.setattr(flow_model, 'CACHE_SIZE', 2)
        flows = [
            SimpleNamespace(id=f'f{n}', version=1, encoding='graph', definition=graph_definition())
            for n in range(3)
        ]

        first = resolve(flows[0])
        resolve(flows[1])
        assert resolve(flows[0]) is first
        resolve(flows[2])

        assert len(flow_model._cache) == 2
        assert ('f1', 1) not in flow_model._cache
        assert resolve(flows[0]) is first
        flow_model.clear_cache()
