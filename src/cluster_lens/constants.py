"""Centralized constants for Cluster Lens."""

# Correlation cache
CACHE_MAX_AGE_SECONDS = 300
SWEEP_INTERVAL_SECONDS = 60

# Request log and payload history
MAX_REQUESTS = 100
HISTORY_LIMIT = 100

# Address patterns that mark an endpoint as GraphQL traffic (case-insensitive)
DEFAULT_ADDRESS_PATTERNS = [
    r"graphql",
    r"api/gql",
    r"\bgql\b",
    r"query",
    r"subscriptions",
    r"zuul",  # Netflix Zuul gateway
]

# Collection field names that hold the cluster connection, tried in order
DEFAULT_COLLECTION_FIELDS = [
    "prsn_deduplicationClusters",
    "deduplicationClusters",
]

# Operation whose variables name the requested cluster
CLUSTER_DETAILS_OPERATION = "getPersonClusterDetails"

# Source tag used by the injected page interceptor
INJECTED_MESSAGE_SOURCE = "graphql-direct-interceptor"

UNKNOWN_OPERATION = "Unknown Operation"
NO_NAME = "No name"

# Sink transport
SINK_TIMEOUT_SECONDS = 10
