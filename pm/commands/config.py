"""
pm config command (--config KEY=VALUE).
"""

import os
import sys
from typing import Any

from binplug.config import config_root_for, set_option


def config_command(args: Any) -> int:
    """
    Persist one configuration option into config.toml.

    Returns:
        Exit code
    """
    key, sep, value = args.config.partition("=")
    if not sep or not key:
        print("Error: Expected KEY=VALUE", file=sys.stderr)
        return 1

    config_root = config_root_for(os.environ)
    set_option(config_root, key.strip(), value.strip())
    print(f"{key.strip()} updated in {config_root / 'config.toml'}")
    return 0
