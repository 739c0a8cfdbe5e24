"""Exceptions and warnings raised by the export pipeline."""


class CityTwinError(Exception):
    """Base class for export errors."""


class DocumentOpenError(CityTwinError):
    """The input document could not be opened or parsed."""

    def __init__(self, path, reason):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Failed to open {self.path}: {reason}")


class CyclicInstanceError(CityTwinError):
    """An instance definition (indirectly) references itself."""

    def __init__(self, chain):
        self.chain = tuple(chain)
        path = ' -> '.join(str(c) for c in self.chain)
        super().__init__(f"Cyclic instance reference: {path}")


class UnknownDefinitionError(CityTwinError):
    """An instance reference names a definition missing from the table."""

    def __init__(self, definition_id):
        self.definition_id = definition_id
        super().__init__(f"Unknown instance definition: {definition_id}")


class CityTwinWarning(UserWarning):
    pass


class DegenerateGeometryWarning(CityTwinWarning):
    """A triangle failed the validity filter and was skipped."""


class EmptySolidWarning(CityTwinWarning):
    """A solid group had no facets left after clipping."""
