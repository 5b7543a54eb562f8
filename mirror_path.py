from reference import ImageReference


def _base(registry: str, prefix: str) -> str:
    parts = [registry.strip("/")]
    if prefix and prefix.strip("/"):
        parts.append(prefix.strip("/"))
    return "/".join(parts)


def build_catalog_mirror(ref: ImageReference, registry: str, prefix: str) -> ImageReference:
    """
    Mirror identifier for the extraction catalog: every '/' in the source
    repository becomes '_', giving a single path segment under the prefix.

    e.g. myapp/web:1.0 -> registry/prefix/myapp_web:1.0
    """
    flattened = ref.repository.replace("/", "_")
    return ImageReference(repository=f"{_base(registry, prefix)}/{flattened}", tag=ref.tag)


def build_push_mirror(ref: ImageReference, registry: str, prefix: str) -> ImageReference:
    """
    Pushable mirror path: the source repository hierarchy is kept as is.

    e.g. myapp/web:1.0 -> registry/prefix/myapp/web:1.0
    """
    return ImageReference(repository=f"{_base(registry, prefix)}/{ref.repository}", tag=ref.tag)
