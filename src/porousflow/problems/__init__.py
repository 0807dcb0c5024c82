"""Ready-made simulation problems."""

from .power_injection import *  # noqa
