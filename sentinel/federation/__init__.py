"""
Federated contribution layer.

Exposes the differential-privacy mechanism, budget accounting, the update
schema, transports and the per-device client.
"""

from .privacy import DifferentialPrivacy, PrivacyConfig
from .accountant import PrivacyAccountant
from .packets import FederatedUpdate
from .transport import BaseTransport, HttpTransport, LoopbackTransport, TransportConfig, build_transport
from .client import FederatedClient, FederatedClientConfig

__all__ = [
    "BaseTransport",
    "DifferentialPrivacy",
    "FederatedClient",
    "FederatedClientConfig",
    "FederatedUpdate",
    "HttpTransport",
    "LoopbackTransport",
    "PrivacyAccountant",
    "PrivacyConfig",
    "TransportConfig",
    "build_transport",
]
