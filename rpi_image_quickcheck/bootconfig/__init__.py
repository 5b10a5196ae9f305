"""PARTUUID references in cmdline.txt and /etc/fstab.

Main Functions:
    - actual_uuid(): PARTUUID of a partition from block device metadata
    - referenced_uuid(): PARTUUID referenced on one line of a file
    - read_references(): The three references of a mounted image
    - check(): Classify an image as OK or NEEDS_FIX
    - apply(): Repair mismatched references in place
"""

from .checker import check, check_references
from .extractor import actual_uuid, read_references, referenced_uuid
from .fixer import apply


__all__ = [
    "actual_uuid",
    "apply",
    "check",
    "check_references",
    "read_references",
    "referenced_uuid",
]
