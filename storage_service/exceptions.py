class RequiredBucketNotFoundException(Exception):
    """Raised when the configured storage root (bucket or directory) is missing."""
