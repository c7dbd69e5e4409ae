"""
targets.py

Target definitions (selector sets, step sequences, success predicates) are
configuration data versioned in config/targets.json. This module parses and
validates them.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from base_exceptions import TargetDefinitionError
from filling import StepAction, WizardStep
from flow import PageCheck
from locator import FieldSelectors, SelectorCandidate

logger = logging.getLogger(__name__)

FIELD_ACTIONS = {StepAction.FILL, StepAction.CLICK, StepAction.SELECT, StepAction.WAIT_FOR_ELEMENT}

STEP_KEYS = set(WizardStep.__dataclass_fields__) - {'action'}


@dataclass
class TargetDefinition:
    """Everything needed to automate one site."""
    name: str
    display_name: str = ""
    enabled: bool = True
    budget_ms: Optional[int] = None
    selectors: Dict[str, FieldSelectors] = field(default_factory=dict)
    steps: List[WizardStep] = field(default_factory=list)
    checks: Dict[str, List[PageCheck]] = field(default_factory=dict)
    success_check: Optional[str] = None
    dry_run_check: Optional[str] = None

    def validate(self) -> None:
        errors = []
        if not self.steps:
            errors.append("has no steps")
        for step in self.steps:
            if step.action in FIELD_ACTIONS and step.target_field not in self.selectors:
                errors.append(f"step '{step.name}' refers to unknown field '{step.target_field}'")
            if step.action == StepAction.NAVIGATE and not (step.value or step.value_from):
                errors.append(f"step '{step.name}' navigates without a URL")
            if step.checkpoint and step.checkpoint not in self.checks:
                errors.append(f"step '{step.name}' uses unknown checkpoint '{step.checkpoint}'")
        if self.success_check and self.success_check not in self.checks:
            errors.append(f"unknown success check '{self.success_check}'")
        if self.dry_run_check and self.dry_run_check not in self.checks:
            errors.append(f"unknown dry run check '{self.dry_run_check}'")
        for check_name, checks in self.checks.items():
            for check in checks:
                if check.kind == "element_visible" and check.value not in self.selectors:
                    errors.append(f"check '{check_name}' refers to unknown field '{check.value}'")
        if errors:
            raise TargetDefinitionError(f"target '{self.name}' " + "; ".join(errors))


def _parse_selectors(data: Dict[str, Any]) -> Dict[str, FieldSelectors]:
    selectors = {}
    for field_name, entry in data.items():
        if isinstance(entry, list):
            entry = {'candidates': entry}
        candidates = [SelectorCandidate(name=c['name'], selector=c['selector']) for c in entry.get('candidates', [])]
        if not candidates:
            raise TargetDefinitionError(f"field '{field_name}' has no selector candidates")
        selectors[field_name] = FieldSelectors(field_name=field_name, candidates=candidates,
                                               snapshot=entry.get('snapshot', 'input'))
    return selectors


def _parse_step(data: Dict[str, Any]) -> WizardStep:
    try:
        action = StepAction(data['action'])
    except (KeyError, ValueError):
        raise TargetDefinitionError(f"step {data.get('name', '?')!r} has unknown action {data.get('action')!r}")
    unknown = set(data) - STEP_KEYS - {'action'}
    if unknown:
        raise TargetDefinitionError(f"step {data.get('name', '?')!r} has unknown keys: {sorted(unknown)}")
    return WizardStep(action=action, **{k: v for k, v in data.items() if k != 'action'})


def parse_target_definition(name: str, data: Dict[str, Any]) -> TargetDefinition:
    definition = TargetDefinition(
        name=name,
        display_name=data.get('display_name', name),
        enabled=data.get('enabled', True),
        budget_ms=data.get('budget_ms'),
        selectors=_parse_selectors(data.get('selectors', {})),
        steps=[_parse_step(step) for step in data.get('steps', [])],
        checks={check_name: [PageCheck(kind=c['kind'], value=c['value']) for c in checks]
                for check_name, checks in data.get('checks', {}).items()},
        success_check=data.get('success_check'),
        dry_run_check=data.get('dry_run_check'),
    )
    definition.validate()
    return definition


def load_target_definitions(path: str) -> Dict[str, TargetDefinition]:
    """Load and validate every target in a catalog file, keyed by lower-case name."""
    catalog_path = Path(path)
    with open(catalog_path, 'r', encoding='utf-8') as f:
        catalog = json.load(f)

    definitions = {}
    for name, data in catalog.get('targets', {}).items():
        definitions[name.lower()] = parse_target_definition(name.lower(), data)

    logger.info(f"Loaded {len(definitions)} target definition(s) from {catalog_path}: {sorted(definitions)}")
    return definitions
