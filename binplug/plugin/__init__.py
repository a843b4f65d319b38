"""
binplug Plugin System - manifest, resolution, installation and run orchestration.

This module handles:
- Plugin manifest loading and refresh
- Latest-version resolution per platform
- Verified download and installation
- The run state machine
"""

__all__ = []
