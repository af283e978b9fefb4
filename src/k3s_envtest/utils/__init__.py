"""
Utils package - helpers for certificates, ports and Kubernetes API access.
"""

from k3s_envtest.utils.certificates import CertificateBundle, issue_certificates
from k3s_envtest.utils.ports import find_available_port, find_available_port_in_range

__all__ = [
    "CertificateBundle",
    "find_available_port",
    "find_available_port_in_range",
    "issue_certificates",
]
