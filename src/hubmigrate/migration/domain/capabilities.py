"""Gateway capability classification.

A device is gateway-capable (an IoT Edge device) when its capability flags
say so, or, failing that, when it hosts one of the edge runtime's system
modules. Older exports and hand-written documents often lose the flag but
keep the modules, so the module check is a real fallback rather than a
tie-breaker.
"""

from enum import Enum
from typing import Iterable, Optional

from .entities import CapabilityFlags, ModuleSnapshot

EDGE_AGENT_MODULE_ID = "$edgeAgent"
EDGE_HUB_MODULE_ID = "$edgeHub"
EDGE_SYSTEM_MODULE_IDS = frozenset({EDGE_AGENT_MODULE_ID, EDGE_HUB_MODULE_ID})


class ClassificationRule(str, Enum):
    """Which rule decided the classification; callers log it."""

    CAPABILITY_FLAG = "capability_flag"
    SYSTEM_MODULE = "system_module"
    DEFAULT = "default"


def classify_with_rule(
    capabilities: Optional[CapabilityFlags],
    modules: Iterable[ModuleSnapshot],
) -> tuple[bool, ClassificationRule]:
    """Classify a device and report the rule that fired.

    Rules apply in order and short-circuit: an explicit true flag wins;
    otherwise any edge system module makes the device gateway-capable; a
    false flag does not suppress the module check.
    """
    if capabilities is not None and capabilities.gateway_capable:
        return True, ClassificationRule.CAPABILITY_FLAG

    for module in modules:
        if module.module_id in EDGE_SYSTEM_MODULE_IDS:
            return True, ClassificationRule.SYSTEM_MODULE

    return False, ClassificationRule.DEFAULT


def classify(
    capabilities: Optional[CapabilityFlags],
    modules: Iterable[ModuleSnapshot],
) -> bool:
    """Return True when the device should be created as gateway-capable."""
    gateway_capable, _ = classify_with_rule(capabilities, modules)
    return gateway_capable
