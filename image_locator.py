import re
import logging
from typing import Iterable, List, Set

from reference import has_template_marker

logger = logging.getLogger(__name__)

CONTAINER_WINDOW = 20

_IMAGE_LINE = re.compile(r"^\s*(?:-\s*)?image:\s*(.*)$")
_VALUES_IMAGE_LINE = re.compile(r"\bimage:\s*(.*)$")
_REPOSITORY_LINE = re.compile(r"^\s*repository:\s*(.*)$")
_TAG_LINE = re.compile(r"^\s*tag:\s*(.*)$")
_COMMENT = re.compile(r"\s+#.*$|^#.*$")


def _clean(value: str, strip_comment: bool = False) -> str:
    if strip_comment:
        value = _COMMENT.sub("", value)
    return value.replace('"', "").replace("'", "").strip()


def _keep(candidate: str) -> bool:
    return bool(candidate) and not has_template_marker(candidate)


def direct_images(manifest_text: str) -> List[str]:
    """
    Every `image:` line (optionally a list item) in the rendered manifests.
    """
    images = []
    for line in manifest_text.splitlines():
        match = _IMAGE_LINE.match(line)
        if match:
            image = _clean(match.group(1), strip_comment=True)
            if _keep(image):
                logger.debug(f"Found image from template: {image}")
                images.append(image)
    return images


def container_block_images(manifest_text: str) -> List[str]:
    """
    `image:` lines within the window following each `containers:` line.

    Only values containing a '/' are taken, which keeps unrelated `image:`
    keys out.
    """
    lines = manifest_text.splitlines()
    images = []
    for idx, line in enumerate(lines):
        if "containers:" not in line:
            continue
        for candidate in lines[idx + 1: idx + 1 + CONTAINER_WINDOW]:
            match = _IMAGE_LINE.match(candidate)
            if not match:
                continue
            image = _clean(match.group(1), strip_comment=True)
            if _keep(image) and "/" in image:
                logger.debug(f"Found container image: {image}")
                images.append(image)
    return images


def values_pair_images(values_text: str) -> List[str]:
    """
    Images reconstructed from a chart's values source.

    Each `repository:` value is paired with the 'latest' tag. `tag:` values are
    collected but not matched to repositories by position. Complete `image:`
    values containing a '/' are taken as they are.
    """
    images = []
    repositories = []
    tags = []
    for line in values_text.splitlines():
        repo_match = _REPOSITORY_LINE.match(line)
        if repo_match:
            repositories.append(_clean(repo_match.group(1), strip_comment=True))
            continue
        tag_match = _TAG_LINE.match(line)
        if tag_match:
            tags.append(_clean(tag_match.group(1), strip_comment=True))
            continue
        image_match = _VALUES_IMAGE_LINE.search(line)
        if image_match:
            image = _clean(image_match.group(1), strip_comment=True)
            if _keep(image) and "/" in image:
                logger.debug(f"Found complete image in values: {image}")
                images.append(image)

    for repo in repositories:
        if _keep(repo):
            logger.debug(f"Found repository in values: {repo}")
            images.append(f"{repo}:latest")
    if tags:
        logger.debug(f"Ignoring {len(tags)} tag values in values source (repositories default to 'latest')")
    return images


def locate(manifest_text: str, values_text: str = "") -> Set[str]:
    """
    Union of all passes over the rendered manifests and the values source,
    with empty and templated candidates removed.
    """
    candidates: Iterable[str] = (
        direct_images(manifest_text)
        + container_block_images(manifest_text)
        + values_pair_images(values_text)
    )
    return {c for c in candidates if _keep(c)}


def locate_chart(helm_chart) -> Set[str]:
    """
    Render a chart and locate its images. A chart that fails to render
    contributes no images.
    """
    manifest_text, ok = helm_chart.render()
    if not ok:
        return set()
    images = locate(manifest_text, helm_chart.read_values())
    if not images:
        logger.debug(f"No images found in chart: {helm_chart.path}")
    return images
