################################################################################
# DOCKA-BACKUP
#
# @file:        __init__.py
# @module:      docka_backup
# @description: Cold backup & restore of Docker volumes to an SSH server
# @repository:  https://github.com/docka-backup/docka-backup
# @version:     1.0.0
#
# ------------------------------------------------------------------------------
# MIT-Lizenz: siehe LICENSE oder https://opensource.org/licenses/MIT
################################################################################

"""
docka-backup

Stops the containers using a volume, archives the volume, restarts the
containers and ships one bundle per run to a remote server over SSH.
"""

from .helpers.constants import VERSION
from .helpers.config import AppConfig
from .helpers.errors import DockaBackupError
from .types import Archive, RemoteBackupSet, RestoreRequest, RunSummary, TargetResult

__version__ = VERSION

__all__ = [
    '__version__',
    'AppConfig',
    'DockaBackupError',
    'Archive',
    'RemoteBackupSet',
    'RestoreRequest',
    'RunSummary',
    'TargetResult',
]
