from infrasynth.models.resource import Binding, Parameter, Resource, ResourceKind
from infrasynth.models.topology import Topology
from infrasynth.models.files import GeneratedFile, VirtualFileTree

__all__ = [
    "Binding",
    "GeneratedFile",
    "Parameter",
    "Resource",
    "ResourceKind",
    "Topology",
    "VirtualFileTree",
]
