"""Client version tracking.

CLIENT_VERSION follows the wire protocol this client speaks, not the
release cadence of the package.

Bump rules:
- Patch (0.1.x): bug fixes, retry/backoff tweaks
- Minor (0.x.0): new event types, new operations
- Major (x.0.0): incompatible changes to the wire protocol
"""

CLIENT_VERSION = "0.1.0"
