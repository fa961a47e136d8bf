"""archstrap: resumable Arch Linux installer.

Core design goals:
- Ordered, resumable stages with a checkpoint after each one
- Dry-run that walks every decision without touching disks
- Full-disk LUKS2 encryption with hardened BTRFS subvolumes
- Hardware quirks applied from a static table
"""

__all__ = []
