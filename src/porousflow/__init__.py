"""
*porousflow*

Fully implicit finite-volume simulation of multi-phase flow in porous media.
"""

from ._precision import *  # noqa
from .errors import *  # noqa
from .constants import *  # noqa
from .config import *  # noqa
from .types import *  # noqa
from .utils import *  # noqa
from .timing import *  # noqa
from .grid import *  # noqa
from .materials import *  # noqa
from .boundary_conditions import *  # noqa
from .newton import *  # noqa
from .model import *  # noqa
from .immiscible import *  # noqa
from .controller import *  # noqa
from .vtk import *  # noqa
from .problem import *  # noqa
from .restart import *  # noqa
from .simulator import *  # noqa
from .serialization import *  # noqa
