class ExperimentError(Exception):
    """Base class for experiment errors."""


class ValidationError(ExperimentError):
    """Bad participant input (empty id, response outside 0-100)."""


class MissingCollaboratorError(ExperimentError):
    """A generator, grader, renderer, store or presenter was not supplied."""


class PersistenceCorruptionError(ExperimentError):
    """Stored record data could not be decoded."""


class GenerationError(ExperimentError):
    """Trial values could not be drawn within the retry bound."""


class ConfigError(ExperimentError):
    """The experiment configuration cannot be run."""
