"""Domain-specific exceptions for the research pipeline."""


class ResearchPipelineError(Exception):
    """Base exception for research pipeline errors."""


class InvalidRequestError(ResearchPipelineError):
    """Raised when a research request is rejected before any network call."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid research request: {reason}")


class DecompositionError(ResearchPipelineError):
    """Raised when the topic could not be split into sub-queries by the model."""

    def __init__(self, topic: str, reason: str) -> None:
        self.topic = topic
        self.reason = reason
        super().__init__(f"Failed to decompose topic '{topic}': {reason}")


class GenerationError(ResearchPipelineError):
    """Raised for a failed call to the generation service."""

    def __init__(self, reason: str, retryable: bool = False) -> None:
        self.reason = reason
        self.retryable = retryable
        super().__init__(f"Generation failed: {reason}")
