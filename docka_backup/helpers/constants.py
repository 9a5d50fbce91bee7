"""
Constants used throughout the docka-backup application.

This module defines all constant values used across different modules
to ensure consistency and ease of maintenance.
"""

from pathlib import Path

# Version information
VERSION = "1.0.0"

# Default paths
DEFAULT_BACKUP_ROOT = Path('/backup')
DEFAULT_TEMP_PATH = Path('/tmp/docka-backup')
DEFAULT_SSH_KEY_PATH = Path('/.ssh/id_rsa')

# Archive naming (fixed across versions, remote sets depend on it)
ARCHIVE_PREFIX = 'backup-'
ARCHIVE_SUFFIX = '.tar.gz'
ARCHIVE_TIMESTAMP_FORMAT = '%Y-%m-%dT%H-%M-%S'
MEMBER_SUFFIX = '.tar.gz'
PARTIAL_UPLOAD_SUFFIX = '.partial'

# Actions and selectors
ACTION_BACKUP = 'backup'
ACTION_RESTORE = 'restore'
SELECTOR_LATEST = 'latest'
SELECTOR_ALL = 'all'

# System thresholds
RAM_WORKER_THRESHOLDS = [
    (2, 1),    # <= 2GB: 1 worker
    (4, 2),    # <= 4GB: 2 workers
    (8, 3),    # <= 8GB: 3 workers
    (float('inf'), 4)  # > 8GB: 4 workers
]
MAX_PARALLEL_WORKERS = 32

# Timeouts (in seconds)
CONTAINER_STOP_TIMEOUT = 30
CONTAINER_START_TIMEOUT = 60
DOCKER_API_TIMEOUT = 120
SSH_CONNECT_TIMEOUT = 15
SSH_CHANNEL_TIMEOUT = 300

# Retry policy
CONTAINER_RETRY_ATTEMPTS = 3
CONTAINER_RETRY_WAIT_MIN = 1
CONTAINER_RETRY_WAIT_MAX = 5
TRANSPORT_RETRY_ATTEMPTS = 4
TRANSPORT_RETRY_WAIT_MIN = 2
TRANSPORT_RETRY_WAIT_MAX = 30
STOP_CONCURRENCY = 4

# Logging
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
