"""Exception hierarchy for the audiobook merger."""


class MergeError(Exception):
    """Base exception for all merge errors."""


class InputValidationError(MergeError):
    """Invalid input paths or flag combinations."""


class ExistingOutputError(MergeError):
    """Destination already exists and --force was not given."""


class ConversionFailure(MergeError):
    """The encoder produced no output (or an empty one) for a source file."""


class MergeFailure(MergeError):
    """Concatenation produced no merged file."""


class MetadataLookupFailure(MergeError):
    """External chapter reference data is unavailable or malformed."""


class FilesystemError(MergeError):
    """Creating, renaming or deleting a file or directory failed."""


class ExternalToolError(MergeError):
    """An external subprocess (ffmpeg, ffprobe) failed."""

    def __init__(self, tool: str, exit_code: int, stderr: str) -> None:
        super().__init__(f"{tool} exited with code {exit_code}: {stderr}")
        self.tool = tool
        self.exit_code = exit_code
        self.stderr = stderr
