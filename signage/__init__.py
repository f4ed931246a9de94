"""Signage Sync — real-time settings distribution for school displays.

Server side of the system: a single authoritative settings snapshot,
session-gated writes, and a Server-Sent Events push channel that keeps
every connected display in step.

Quickstart::

    python -m signage.server
    # or
    uvicorn signage.server:app --host 0.0.0.0 --port 3000
"""

__version__ = "2.0.0"
