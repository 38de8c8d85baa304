"""
Node Knowledge Base — parameter-format rules for branching nodes.

The remote service accepts several parameter shapes for ``if`` and
``switch`` nodes, but its visual editor only renders some of them.
``NodeKnowledgeBase.validate`` reports which known format a node's
parameters match and whether the editor can render it, so the builder
can warn before commit instead of producing a blank canvas.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import Any, Callable, Dict, List, Mapping, Optional

logger = getLogger(__name__)

NODE_BEHAVIOR_REFERENCE = "https://docs.n8n.io/integrations/builtin/core-nodes/"


@dataclass
class ValidationResult:
    """Outcome of checking one node's parameters against known formats."""

    valid: bool = True
    matched_format: Optional[str] = None
    editor_compatible: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "matched_format": self.matched_format,
            "editor_compatible": self.editor_compatible,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


Validator = Callable[[Mapping[str, Any]], ValidationResult]


# ============================================================================
# Per-type validators
# ============================================================================


def _validate_switch(params: Mapping[str, Any]) -> ValidationResult:
    result = ValidationResult()
    rules = params.get("rules")
    mode = params.get("mode")

    if rules is None:
        if mode == "expression" and params.get("output") not in (None, "multipleOutputs"):
            result.matched_format = "expression"
            result.warnings.append(
                "Switch in plain expression mode can only route to a computed output index; "
                "use output='multipleOutputs' with rules.rules for named branches."
            )
            return result
        result.warnings.append(
            "Switch has no routing rules yet; it is treated as having 2 outputs until rules are configured."
        )
        return result

    if isinstance(rules, list):
        result.matched_format = "rules-list"
        result.editor_compatible = False
        result.warnings.append(
            "Switch rules given as a bare list are accepted by the API but not rendered by the editor; "
            "wrap them as {mode: 'expression', output: 'multipleOutputs', rules: {rules: [...]}}."
        )
        return result

    if not isinstance(rules, Mapping):
        result.valid = False
        result.errors.append(f"Switch 'rules' must be an object or list, got {type(rules).__name__}")
        return result

    if isinstance(rules.get("values"), list):
        result.matched_format = "rules-values"
        result.editor_compatible = False
        result.warnings.append(
            "Switch 'rules.values' format commits successfully but the editor cannot render it "
            "(blank canvas). Use mode='expression', output='multipleOutputs' and 'rules.rules' "
            "with an outputKey per branch."
        )
        return result

    if isinstance(rules.get("rules"), list):
        result.matched_format = "expression-multipleOutputs"
        if mode != "expression" or params.get("output") != "multipleOutputs":
            result.editor_compatible = False
            result.warnings.append(
                "Switch 'rules.rules' requires mode='expression' and output='multipleOutputs'."
            )
        missing = [i for i, r in enumerate(rules["rules"]) if not isinstance(r, Mapping) or not r.get("outputKey")]
        if missing:
            result.warnings.append(f"Switch rules without outputKey at positions {missing}")
        return result

    result.valid = False
    result.errors.append("Switch 'rules' object must contain a 'rules' or 'values' list")
    return result


def _validate_conditions(label: str) -> Validator:
    def _validate(params: Mapping[str, Any]) -> ValidationResult:
        result = ValidationResult()
        conditions = params.get("conditions")
        if conditions is None:
            result.warnings.append(f"{label} has no conditions configured; every item takes the first output.")
            return result
        if not isinstance(conditions, Mapping):
            result.valid = False
            result.errors.append(f"{label} 'conditions' must be an object, got {type(conditions).__name__}")
            return result
        if isinstance(conditions.get("conditions"), list):
            result.matched_format = "combinator"
            if conditions.get("combinator") not in ("and", "or"):
                result.warnings.append(f"{label} combinator should be 'and' or 'or'; defaulting to 'and'.")
            return result
        legacy = [k for k in ("boolean", "string", "number", "dateTime") if k in conditions]
        if legacy:
            result.matched_format = "legacy-options"
            result.warnings.append(
                f"{label} uses the legacy per-type conditions format ({', '.join(legacy)}); "
                "prefer {combinator, conditions: [...]}."
            )
            return result
        result.valid = False
        result.errors.append(f"{label} 'conditions' matches no known format")
        return result

    return _validate


class NodeKnowledgeBase:
    """Registry of parameter-format validators keyed by simplified type."""

    def __init__(self, validators: Optional[Dict[str, Validator]] = None) -> None:
        self._validators: Dict[str, Validator] = dict(validators or {})

    def register(self, simplified_type: str, validator: Validator) -> None:
        self._validators[simplified_type.lower()] = validator

    def knows(self, simplified_type: str) -> bool:
        return simplified_type.lower() in self._validators

    def validate(self, simplified_type: str, parameters: Mapping[str, Any]) -> ValidationResult:
        validator = self._validators.get(simplified_type.lower())
        if validator is None:
            return ValidationResult(matched_format="default")
        return validator(parameters or {})


def create_default_knowledge_base() -> NodeKnowledgeBase:
    return NodeKnowledgeBase({
        "switch": _validate_switch,
        "if": _validate_conditions("IF"),
        "filter": _validate_conditions("Filter"),
    })
