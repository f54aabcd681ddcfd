"""
Exception types raised by the ohmage pipeline
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline failures"""


class MalformedInput(PipelineError):
    """An upload cannot be parsed as JSON or is not a JSON object"""


class SchemaMismatch(PipelineError):
    """A value does not conform to the declared prompt type or domain"""

    def __init__(
        self,
        prompt_id: Optional[str],
        expected_type: Optional[str],
        message: Optional[str] = None
    ):
        self.prompt_id = prompt_id
        self.expected_type = expected_type
        if message is None:
            message = f"The value for '{prompt_id}' is not a valid {expected_type}"
        super().__init__(message)


class UnknownPromptType(SchemaMismatch):
    """The data references a prompt the definition does not declare"""


class DefinitionError(PipelineError):
    """An unusable definition or an invalid version transition"""


class EncodingFailure(PipelineError):
    """Output could not be built; always converted to an error envelope"""
