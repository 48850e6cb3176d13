"""Exceptions raised while fetching and normalizing library data."""


class LibraryEventsError(Exception):
    """Base class for library events errors."""


class InvalidDate(LibraryEventsError, ValueError):
    """A date value could not be parsed by any accepted format."""

    def __init__(self, value):
        self.value = value
        super().__init__(f"Could not parse date: {value!r}")


class NoMatch(LibraryEventsError, LookupError):
    """A branch name could not be resolved to coordinates."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No location match for {name!r}")


class SourceUnavailable(LibraryEventsError):
    """The open data catalogue could not be reached or returned garbage."""


class NoDatastoreResource(LibraryEventsError):
    """A catalogue package has no queryable datastore resource."""

    def __init__(self, package_id: str):
        self.package_id = package_id
        super().__init__(f"No datastore resources found for package {package_id}")
