"""
Constants used throughout the test environment bootstrapper.

This module defines all constant values including:
- Certificate file names and default subject alternative names
- Webhook URL scheme and well-known paths
- Default poll intervals and timeouts
- Kubernetes condition names
"""

# Certificate artifacts, written into the certificate directory
CA_CERT_FILE_NAME = "cert-ca.pem"
CERT_FILE_NAME = "cert-tls.pem"
KEY_FILE_NAME = "key-tls.pem"
CERT_DIR_PERMISSION = 0o750
CERT_FILE_PERMISSION = 0o644
KEY_FILE_PERMISSION = 0o600
DEFAULT_CERT_DIR_PREFIX = "k3senv-certs-"
DEFAULT_CERT_VALIDITY_HOURS = 24
CA_COMMON_NAME = "k3senv-ca"

# Hostnames and IPs the leaf certificate is valid for. Covers the docker
# host gateway aliases, loopback, in-cluster service names and the usual
# docker bridge gateways the cluster may reach the host through.
CERTIFICATE_SANS = (
    "host.docker.internal",
    "host.testcontainers.internal",
    "localhost",
    "*.*.svc",
    "*.*.svc.cluster.local",
    "127.0.0.1",
    "172.17.0.1",
    "172.18.0.1",
    "172.19.0.1",
    "172.20.0.1",
)

# Webhook wiring
WEBHOOK_URL_SCHEME = "https"
WEBHOOK_CONVERT_PATH = "/convert"
WEBHOOK_DEFAULT_PATH = "/"
WEBHOOK_LOCAL_HOST = "127.0.0.1"
CONVERSION_REVIEW_VERSIONS = ("v1", "v1beta1")

# Defaults
DEFAULT_WEBHOOK_PORT = 9443
DEFAULT_WEBHOOK_POLL_INTERVAL = 0.5
DEFAULT_WEBHOOK_READY_TIMEOUT = 30.0
DEFAULT_WEBHOOK_HEALTH_CHECK_TIMEOUT = 5.0
DEFAULT_CRD_POLL_INTERVAL = 0.1
DEFAULT_CRD_READY_TIMEOUT = 30.0

# Poll intervals below this floor are rejected to prevent tight loops
MIN_POLL_INTERVAL = 0.01

# Synthetic admission review used for endpoint health checks
HEALTH_CHECK_REVIEW_UID = "00000000-0000-0000-0000-000000000000"

# Condition constants (following Kubernetes conventions)
CONDITION_ESTABLISHED = "Established"
CONDITION_TRUE = "True"
