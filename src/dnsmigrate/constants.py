"""Shared constants."""

# Forwarding target for names that are only resolvable on the public internet
UPSTREAM = "@upstream"

# Core phases, in strict order. Migration, revert and retirement phases are
# parameterized by zone and recorded as "<Phase>:<zone>".
INFRASTRUCTURE = "Infrastructure"
CONNECTIVITY = "Connectivity"
DNS_CONFIG = "DnsConfig"
CUTOVER = "Cutover"
ZONE_MIGRATION = "ZoneMigration"
REVERT_ZONE = "RevertZone"
RETIRE_LEGACY = "RetireLegacy"
COMPLETE = "Complete"
TEARDOWN = "Teardown"

CORE_PHASES = [INFRASTRUCTURE, CONNECTIVITY, DNS_CONFIG, CUTOVER]

# Collaborator call policy defaults
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_CALL_TIMEOUT = 30.0
DEFAULT_BACKOFF_MULTIPLIER = 0.5
DEFAULT_BACKOFF_MIN = 0.5
DEFAULT_BACKOFF_MAX = 8.0

# Lease defaults
DEFAULT_LEASE_TTL = 900.0
DEFAULT_STATE_DIR = ".dnsmigrate"
PHASE_LOG_FILENAME = "phases.jsonl"
LEASE_DIRNAME = "lease"

# Resource kinds handed to the Provisioner
RESOURCE_SEGMENT = "segment"
RESOURCE_DNS_SERVER = "dns_server"
RESOURCE_ENDPOINT = "private_endpoint"
RESOURCE_LINK = "link"


def phase_name(phase: str, zone: str | None = None) -> str:
    """Build a record name, e.g. phase_name("ZoneMigration", "blob.example")."""
    return f"{phase}:{zone}" if zone else phase


def split_phase_name(name: str) -> tuple[str, str | None]:
    """Inverse of phase_name."""
    phase, _, zone = name.partition(":")
    return phase, zone or None
