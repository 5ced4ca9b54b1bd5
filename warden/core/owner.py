"""
Ownership of in-flight work.

apply() and rollback() stamp the record with the process running the
Applier. Recovery only repairs work whose owner is gone: a record pending
in a live process is progress, not a crash.

The database is a local SQLite file, so an owner on another host is
treated as gone (the host was renamed or the container restarted).
"""

import os
import socket
from typing import Any, Dict, Optional

OWNER_KEY = "owner"


def current_owner() -> Dict[str, Any]:
    return {"pid": os.getpid(), "host": socket.gethostname()}


def owner_alive(owner: Optional[Dict[str, Any]]) -> bool:
    """True if owner names a process that still runs on this host."""
    if not isinstance(owner, dict):
        return False
    if owner.get("host") != socket.gethostname():
        return False
    pid = owner.get("pid")
    if not isinstance(pid, int) or pid <= 0:
        return False
    if pid == os.getpid():
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user
        return True
    except OSError:
        return False
    return True
