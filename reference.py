import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_TAG = "latest"
TEMPLATE_MARKERS = ("{{", "}}")


class MalformedReference(ValueError):
    """
    Raised when an image string cannot be reduced to (repository, tag).
    """


@dataclass(frozen=True, order=True)
class ImageReference:
    repository: str
    tag: str = DEFAULT_TAG

    def __str__(self):
        return f"{self.repository}:{self.tag}"


def has_template_marker(value: str) -> bool:
    """
    True when the string still carries an unresolved template delimiter.
    """
    return any(marker in value for marker in TEMPLATE_MARKERS)


def normalize(raw: str) -> ImageReference:
    """
    Parse a raw image string into an ImageReference.

    The tag separator is the last ':' after the last '/', so a registry port
    (host:5000/repo) is kept as part of the repository. A missing tag
    defaults to 'latest'.

    Raises:
        MalformedReference: empty input, template placeholders or whitespace.
    """
    value = (raw or "").strip().strip("\"'").strip()
    if not value:
        raise MalformedReference("empty image reference")
    if has_template_marker(value):
        raise MalformedReference(f"unresolved template in image reference: {value}")
    if any(ch.isspace() for ch in value):
        raise MalformedReference(f"whitespace in image reference: {value}")
    # Digests are dropped; the mirror is keyed on repository and tag only.
    value, _, digest = value.partition("@")
    if digest and value.rfind(":") <= value.rfind("/"):
        logger.warning(f"Image {value}@{digest} is pinned by digest only; mirroring it as {value}:{DEFAULT_TAG}")

    last_slash = value.rfind("/")
    colon = value.rfind(":")
    if colon > last_slash:
        repository, tag = value[:colon], value[colon + 1:]
        if not tag:
            raise MalformedReference(f"empty tag in image reference: {value}")
    else:
        repository, tag = value, DEFAULT_TAG

    if not repository or repository.endswith("/"):
        raise MalformedReference(f"empty repository in image reference: {value}")
    return ImageReference(repository=repository, tag=tag)


def try_normalize(raw: str):
    """
    Like normalize(), but returns None for malformed input instead of raising.
    """
    try:
        return normalize(raw)
    except MalformedReference as e:
        logger.debug(f"Skipping malformed image reference {raw!r}: {e}")
        return None
