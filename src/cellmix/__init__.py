# main

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("cellmix")
except PackageNotFoundError:
    __version__ = "0.1.0.dev"
