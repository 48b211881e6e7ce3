"""Machine image lookup for runner instances."""

from typing import Dict, Iterable, List, Optional, Protocol

import structlog
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from .models import ImageLookup, MachineImage

logger = structlog.get_logger()

# Ubuntu 20.04 (focal), published by Canonical
DEFAULT_IMAGE_LOOKUP = ImageLookup(
    name="ubuntu/images/hvm-ssd/ubuntu-focal-20.04-amd64-server-*",
    owners=["099720109477"],
    filters={
        "architecture": ["x86_64"],
        "image-type": ["machine"],
        "state": ["available"],
        "root-device-type": ["ebs"],
        "virtualization-type": ["hvm"],
    },
)


class ImageRecord(BaseModel):
    """One image as described by the platform."""

    image_id: str
    name: str
    owner: str
    creation_date: str
    attributes: Dict[str, str] = {}


class ImageCatalog(Protocol):
    """Platform collaborator able to list candidate images."""

    def describe_images(self, lookup: ImageLookup) -> Iterable[ImageRecord]:
        ...


def _name_matches(pattern: str, name: str) -> bool:
    # The platform filter only supports a trailing wildcard
    if pattern.endswith("*"):
        return name.startswith(pattern[:-1])
    return name == pattern


def matches(lookup: ImageLookup, image: ImageRecord) -> bool:
    """Check an image against every part of a lookup filter."""
    if not _name_matches(lookup.name, image.name):
        return False
    if lookup.owners and image.owner not in lookup.owners:
        return False
    for key, accepted in lookup.filters.items():
        if image.attributes.get(key) not in accepted:
            return False
    return True


def select_latest_image(
    lookup: ImageLookup, images: Iterable[ImageRecord]
) -> Optional[ImageRecord]:
    """Pick the most recently created image satisfying the lookup."""
    candidates: List[ImageRecord] = [image for image in images if matches(lookup, image)]
    if not candidates:
        return None
    # Creation dates are ISO 8601 strings, so lexical order is chronological
    return max(candidates, key=lambda image: image.creation_date)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=4, max=10),
    reraise=True,
)
def describe_images(catalog: ImageCatalog, lookup: ImageLookup) -> List[ImageRecord]:
    """List candidate images, retrying transient catalog failures."""
    return list(catalog.describe_images(lookup))


def default_machine_image(catalog: Optional[ImageCatalog] = None) -> MachineImage:
    """Default image: the lookup itself, narrowed to an id when a catalog is given."""
    if catalog is None:
        return MachineImage(lookup=DEFAULT_IMAGE_LOOKUP)

    latest = select_latest_image(
        DEFAULT_IMAGE_LOOKUP, describe_images(catalog, DEFAULT_IMAGE_LOOKUP)
    )
    if latest is None:
        logger.warning("No machine image matched the default lookup")
        return MachineImage(lookup=DEFAULT_IMAGE_LOOKUP)
    return MachineImage(image_id=latest.image_id, lookup=DEFAULT_IMAGE_LOOKUP)
