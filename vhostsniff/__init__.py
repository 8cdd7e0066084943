"""Public package surface for vhostsniff.

Importing `vhostsniff` exposes the high-level API function (`VHOSTSNIFF`) and
package version, keeping internals hidden by default.
"""

from .core import VHOSTSNIFF
from .version import __version__

__all__ = ["VHOSTSNIFF", "__version__"]
