class DbTableError(Exception):
    """Base class for errors raised by dbtable itself."""


class ConfigurationError(DbTableError, ValueError):
    """A table, cache, factory or connection was set up with invalid arguments."""


class ValidationError(DbTableError, ValueError):
    """A value map cannot be turned into a statement."""


class TableNotFoundError(DbTableError, LookupError):
    """The catalog reported no columns for a table."""
