"""Error types raised to callers of the topic pipeline."""


class PipelineError(RuntimeError):
    """Base error with a human-readable reason."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ConfigurationError(PipelineError):
    pass


class GenerationError(PipelineError):
    """The text-generation service failed, timed out, or returned nothing usable."""


class GenerationParseError(GenerationError):
    pass


class NoQueriesError(PipelineError):
    pass


class InsufficientResultsError(PipelineError):
    def __init__(self, reason: str, found: int, required: int):
        super().__init__(reason)
        self.found = found
        self.required = required


class TopicGenerationError(PipelineError):
    pass
