class PathbusterError(Exception):
    pass


class ConfigError(PathbusterError):
    """Raised before a scan starts when its inputs cannot be used."""
