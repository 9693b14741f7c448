"""stagefix — staged scan/fix remediation for multi-environment delivery"""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("stagefix")
except PackageNotFoundError:
    __version__ = "dev"

__author__ = "stagefix"
