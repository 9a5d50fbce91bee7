"""Remote storage backends for docka-backup."""

from .sftp import SftpStore

__all__ = ['SftpStore']
