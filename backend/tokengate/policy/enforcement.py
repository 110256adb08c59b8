"""
Enforcement plan synthesis.

Each matched template contributes ledger-level control hints
(``{"xrpl": {"requireAuth": true}, "evm": {...}}``). Boolean flags merge
with logical OR, so a control demanded by any template stays demanded.
Non-boolean (enum) flags keep the first value seen in template order and
every disagreeing value is recorded as a conflict.
"""

import logging
from copy import deepcopy
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

BASELINE_PLAN: dict[str, dict[str, bool]] = {
    "xrpl": {
        "requireAuth": False,
        "trustlineAuthorization": False,
        "freezeControl": False,
    },
    "evm": {
        "allowlistGating": False,
        "pauseControl": False,
        "mintControl": False,
        "transferControl": False,
    },
}


@dataclass
class EnforcementPlan:
    controls: dict[str, dict] = field(default_factory=lambda: deepcopy(BASELINE_PLAN))
    conflicts: list[dict] = field(default_factory=list)

    def merge_hints(self, template_id: str, hints: dict | None) -> None:
        for ledger_kind, flags in (hints or {}).items():
            if not isinstance(flags, dict):
                logger.warning(
                    "Ignoring non-mapping enforcement hints for %s on template %s",
                    ledger_kind, template_id,
                )
                continue
            target = self.controls.setdefault(ledger_kind, {})
            for flag, value in flags.items():
                if isinstance(value, bool):
                    target[flag] = bool(target.get(flag, False)) or value
                    continue
                if flag not in target:
                    target[flag] = value
                elif target[flag] != value:
                    self.conflicts.append({
                        "ledger": ledger_kind,
                        "flag": flag,
                        "kept": target[flag],
                        "ignored": value,
                        "template_id": template_id,
                    })
                    logger.warning(
                        "Enforcement hint conflict on %s.%s: keeping %r, ignoring %r from %s",
                        ledger_kind, flag, target[flag], value, template_id,
                    )

    def is_set(self, ledger_kind: str, flag: str) -> bool:
        return self.controls.get(ledger_kind, {}).get(flag) is True

    def to_dict(self) -> dict:
        return deepcopy(self.controls)


def build_enforcement_plan(templates) -> EnforcementPlan:
    """Merge the hints of the given templates (iterated in the order given)."""
    plan = EnforcementPlan()
    for template in templates:
        plan.merge_hints(template.id, template.enforcement_hints)
    return plan
