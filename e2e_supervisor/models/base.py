"""Base model for immutable configuration records."""

from pydantic import BaseModel, ConfigDict


class Model(BaseModel):
    """Frozen model rejecting unknown fields.

    Configuration is built once by the CLI and handed down unchanged, so
    every record derived from this base is immutable.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")
