"""
Domain models — Pydantic types for the provisioner.

All models are re-exported here for convenient access:

    from provisioner.core.models import Action, Probe, HostFacts, ComponentSpec
"""

from provisioner.core.models.action import (
    Action,
    ActionError,
    ActionFailed,
    ActionResult,
    ErrorKind,
)
from provisioner.core.models.component import ComponentSpec, ComponentVariant, HostSelector
from provisioner.core.models.facts import HostFacts, OsFamily
from provisioner.core.models.node import Node, node_from_dict
from provisioner.core.models.params import ActionKind, ProbeKind
from provisioner.core.models.probe import Probe, ProbeResult, Verdict
from provisioner.core.models.settings import Settings
from provisioner.core.models.state import ComponentState, OperationRecord, ProvisionState

__all__ = [
    # action.py
    "Action",
    "ActionError",
    "ActionFailed",
    "ActionKind",
    "ActionResult",
    # component.py
    "ComponentSpec",
    "ComponentState",
    "ComponentVariant",
    "ErrorKind",
    # facts.py
    "HostFacts",
    "HostSelector",
    # node.py
    "Node",
    "OperationRecord",
    "OsFamily",
    # probe.py
    "Probe",
    "ProbeKind",
    "ProbeResult",
    # state.py
    "ProvisionState",
    # settings.py
    "Settings",
    "Verdict",
    "node_from_dict",
]
