from depresolver.compat import importlib_metadata


def read_version() -> str:
    try:
        return importlib_metadata.version(__package__ or "depresolver")
    except importlib_metadata.PackageNotFoundError:
        return "0.0.0+unknown"


__version__ = read_version()
