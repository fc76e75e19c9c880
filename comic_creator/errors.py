"""Error taxonomy for the comic creator."""


class ComicCreatorError(Exception):
    """Base class for every error raised by the comic creator."""


class ScriptGenerationError(ComicCreatorError):
    """Script or extension call failed, or its output could not be parsed."""


class ImageGenerationError(ComicCreatorError):
    """Image model returned no image after all attempts."""


class PersistenceError(ComicCreatorError):
    """Project store read/write failed."""


class ExportError(ComicCreatorError):
    """Page rendering or PDF/ZIP packaging failed."""


class PipelineBusyError(ComicCreatorError):
    """A generation run (or the same panel) is already in flight."""
