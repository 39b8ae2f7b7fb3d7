"""
Flow Model - Normalizes flow definitions into one step graph.

Two encodings are accepted:

Graph (React Flow):
    {'nodes': [{'id': 'n1', 'type': 'email', 'data': {...}}],
     'edges': [{'source': 'n1', 'target': 'n2', 'sourceHandle': 'true'}]}

Linear (sequence editor):
    {'steps': [{'id': 's1', 'type': 'email', 'subject': 'Hi'},
               {'id': 's2', 'type': 'condition', 'trueBranch': ['s4'], ...}]}

Both become a ResolvedFlow of Steps with `next`, `branches` and `position`.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from dripflow.exceptions import FlowValidationError

logger = logging.getLogger(__name__)

END = 'END'


class StepKind(str, Enum):
    """Normalized step kinds"""
    MESSAGE = "Message"
    DELAY = "Delay"
    CONDITION = "Condition"
    ACTION = "Action"
    EXTERNAL_CALL = "ExternalCall"
    TRIGGER = "Trigger"


# Tipos aceitos nas definições (case-insensitive)
KIND_ALIASES = {
    'email': StepKind.MESSAGE,
    'message': StepKind.MESSAGE,
    'send_email': StepKind.MESSAGE,
    'delay': StepKind.DELAY,
    'wait': StepKind.DELAY,
    'condition': StepKind.CONDITION,
    'action': StepKind.ACTION,
    'apirequest': StepKind.EXTERNAL_CALL,
    'api_request': StepKind.EXTERNAL_CALL,
    'webhook': StepKind.EXTERNAL_CALL,
    'external_call': StepKind.EXTERNAL_CALL,
    'externalcall': StepKind.EXTERNAL_CALL,
    'trigger': StepKind.TRIGGER,
}

# Kinds that can legitimately sit on a cycle (they wait or decide)
CYCLE_BREAKERS = (StepKind.DELAY.value, StepKind.CONDITION.value)


def normalize_kind(raw_type: Optional[str]) -> Optional[str]:
    """Map a definition type to a StepKind value, or None if unknown."""
    if not raw_type:
        return None
    kind = KIND_ALIASES.get(str(raw_type).strip().lower())
    return kind.value if kind else None


@dataclass(frozen=True)
class Step:
    id: str
    kind: Optional[str]
    config: Dict[str, Any] = field(default_factory=dict)
    next: Optional[str] = None
    branches: Dict[str, str] = field(default_factory=dict)
    position: int = 0
    raw_type: Optional[str] = None


@dataclass
class ResolvedFlow:
    """Immutable step graph for one flow version."""
    steps: Dict[str, Step]
    order: List[str]
    entry_step_id: Optional[str]
    encoding: str
    problems: List[str] = field(default_factory=list)

    def get(self, step_id: Optional[str]) -> Optional[Step]:
        if not step_id:
            return None
        return self.steps.get(step_id)

    def positional_successor(self, step: Step) -> Optional[str]:
        if step.id not in self.order:
            return None
        idx = self.order.index(step.id)
        if idx + 1 < len(self.order):
            return self.order[idx + 1]
        return None

    def fallthrough(self, step: Step) -> Optional[str]:
        """Target used when a branch label has no configured target."""
        if step.next:
            return step.next
        if self.encoding == 'graph':
            return self.positional_successor(step)
        return None

    def predecessors(self, step_id: str) -> List[str]:
        result = []
        for sid in self.order:
            step = self.steps[sid]
            if step.next == step_id or step_id in step.branches.values():
                result.append(sid)
        return result


def _branch_target(value: Any) -> Optional[str]:
    """
    Extract a target id from trueBranch/falseBranch.

    Accepts ['s4'], [{'id': 's4'}], 's4', 'END', [] and None.
    """
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get('id')
    if value is None or value == '':
        return None
    return str(value)


def normalize_graph(definition: Dict[str, Any]) -> ResolvedFlow:
    nodes = definition.get('nodes') or []
    edges = definition.get('edges') or []
    problems = []

    trigger_ids = set()
    node_entries: List[Tuple[str, Dict[str, Any], Optional[str], Optional[str]]] = []
    seen = set()
    for node in nodes:
        node_id = node.get('id')
        if not node_id:
            problems.append("node without id")
            continue
        node_id = str(node_id)
        if node_id in seen:
            problems.append(f"duplicate step id: {node_id}")
            continue
        seen.add(node_id)

        data = node.get('data') or {}
        raw_type = node.get('type') or data.get('type')
        kind = normalize_kind(raw_type)
        if kind == StepKind.TRIGGER.value:
            trigger_ids.add(node_id)
            continue

        config = dict(data)
        if isinstance(data.get('config'), dict):
            config.update(data['config'])
        node_entries.append((node_id, config, kind, raw_type))

    next_by_source: Dict[str, str] = {}
    branches_by_source: Dict[str, Dict[str, str]] = {}
    incoming = set()
    entry = None
    for edge in edges:
        source = edge.get('source')
        target = edge.get('target')
        if not source or not target:
            continue
        source, target = str(source), str(target)
        if source in trigger_ids:
            if entry is None:
                entry = target
            continue
        incoming.add(target)
        handle = edge.get('sourceHandle')
        if handle:
            branches_by_source.setdefault(source, {})[str(handle)] = target
        elif source not in next_by_source:
            next_by_source[source] = target

    steps = {}
    order = []
    for position, (node_id, config, kind, raw_type) in enumerate(node_entries):
        steps[node_id] = Step(
            id=node_id,
            kind=kind,
            config=config,
            next=next_by_source.get(node_id),
            branches=branches_by_source.get(node_id, {}),
            position=position,
            raw_type=raw_type,
        )
        order.append(node_id)

    if entry is None:
        entry = next((sid for sid in order if sid not in incoming), None)

    return ResolvedFlow(steps=steps, order=order, entry_step_id=entry, encoding='graph', problems=problems)


def normalize_linear(definition: Dict[str, Any]) -> ResolvedFlow:
    raw_steps = list(definition.get('steps') or [])
    problems = []

    if raw_steps and normalize_kind(raw_steps[0].get('type')) == StepKind.TRIGGER.value:
        raw_steps = raw_steps[1:]

    ids = [str(s.get('id') or f'step-{idx}') for idx, s in enumerate(raw_steps)]

    steps = {}
    order = []
    for idx, raw in enumerate(raw_steps):
        step_id = ids[idx]
        if step_id in steps:
            problems.append(f"duplicate step id: {step_id}")
            continue

        kind = normalize_kind(raw.get('type'))
        next_id = raw.get('nextStepId')
        if not next_id and idx + 1 < len(ids):
            next_id = ids[idx + 1]

        branches = {}
        if kind == StepKind.CONDITION.value:
            nested = raw.get('condition') if isinstance(raw.get('condition'), dict) else {}
            for label, key in (('true', 'trueBranch'), ('false', 'falseBranch')):
                target = _branch_target(raw.get(key, nested.get(key)))
                if target:
                    branches[label] = target

        steps[step_id] = Step(
            id=step_id,
            kind=kind,
            config=dict(raw),
            next=str(next_id) if next_id else None,
            branches=branches,
            position=idx,
            raw_type=raw.get('type'),
        )
        order.append(step_id)

    entry = order[0] if order else None
    return ResolvedFlow(steps=steps, order=order, entry_step_id=entry, encoding='linear', problems=problems)


def resolve_definition(encoding: Optional[str], definition: Optional[Dict[str, Any]]) -> ResolvedFlow:
    definition = definition or {}
    if encoding == 'linear' or (encoding is None and 'steps' in definition):
        return normalize_linear(definition)
    return normalize_graph(definition)


CACHE_SIZE = 256

_cache: 'OrderedDict[Tuple[str, int], ResolvedFlow]' = OrderedDict()


def resolve(flow) -> ResolvedFlow:
    """Resolve a Flow model, cached per (flow id, version), least recently used evicted first."""
    key = (str(flow.id), flow.version or 0)
    resolved = _cache.get(key)
    if resolved is not None:
        _cache.move_to_end(key)
        return resolved

    resolved = resolve_definition(flow.encoding, flow.definition)
    _cache[key] = resolved
    if len(_cache) > CACHE_SIZE:
        _cache.popitem(last=False)
    return resolved


def clear_cache():
    _cache.clear()


def _find_instant_cycle(resolved: ResolvedFlow) -> Optional[List[str]]:
    """Cycle made only of steps that neither wait nor decide."""
    instant = {
        sid for sid, step in resolved.steps.items()
        if step.kind not in CYCLE_BREAKERS
    }

    def successors(step: Step):
        targets = [step.next] + list(step.branches.values())
        return [t for t in targets if t in instant]

    WHITE, GREY, BLACK = 0, 1, 2
    color = {sid: WHITE for sid in instant}

    for start in resolved.order:
        if start not in instant or color[start] != WHITE:
            continue
        stack = [(start, iter(successors(resolved.steps[start])))]
        path = [start]
        color[start] = GREY
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                color[node] = BLACK
                stack.pop()
                path.pop()
            elif color[child] == GREY:
                return path[path.index(child):] + [child]
            elif color[child] == WHITE:
                color[child] = GREY
                path.append(child)
                stack.append((child, iter(successors(resolved.steps[child]))))
    return None


def validate(resolved: ResolvedFlow, flow_id: Optional[str] = None) -> None:
    """
    Activation-time validation.

    Raises:
        FlowValidationError: with every problem found
    """
    problems = list(resolved.problems)

    if not resolved.steps:
        problems.append("flow has no steps")
    elif not resolved.entry_step_id or resolved.entry_step_id not in resolved.steps:
        problems.append(f"entry step not found: {resolved.entry_step_id}")

    for sid in resolved.order:
        step = resolved.steps[sid]
        if step.kind is None:
            problems.append(f"unknown step kind '{step.raw_type}' in step {sid}")
        if step.next and step.next != END and step.next not in resolved.steps:
            problems.append(f"step {sid} points to unknown step {step.next}")
        for label, target in step.branches.items():
            if target != END and target not in resolved.steps:
                problems.append(f"branch '{label}' of step {sid} points to unknown step {target}")

    cycle = _find_instant_cycle(resolved)
    if cycle:
        problems.append("cycle without Delay or Condition: " + " -> ".join(cycle))

    if problems:
        logger.warning(f"Flow {flow_id} failed validation: {problems}")
        raise FlowValidationError(flow_id, problems)
