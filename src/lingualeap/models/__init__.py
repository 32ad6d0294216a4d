"""pydantic request/response models for the vocabulary API."""
