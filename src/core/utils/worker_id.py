"""Instance ID generation using coolnames for unique, memorable identifiers."""

from coolname import generate_slug


def generate_worker_id(prefix: str = "", words: int = 2) -> str:
    """Generate a unique, memorable instance ID.

    The agent uses it as the consumer group suffix, so every agent process
    gets its own group and therefore sees every device event.

    Examples:
        >>> generate_worker_id()
        'golden-tiger'
        >>> generate_worker_id("iotagent")
        'iotagent-swift-falcon'
    """
    slug = generate_slug(words)

    if prefix:
        return f"{prefix}-{slug}"

    return slug
