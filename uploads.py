"""
Image hosting.

Listings only ever store the hosted URL. Files are pushed to Cloudinary in
parallel and the listing write waits for every one of them.
"""
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import BinaryIO, List, Optional, Sequence

import cloudinary
import cloudinary.uploader

from errors import UnexpectedError

logger = logging.getLogger(__name__)

CLOUDINARY_NAME = os.getenv("CLOUDINARY_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_SECRET_KEY = os.getenv("CLOUDINARY_SECRET_KEY")

# multipart slots accepted on create/update
IMAGE_FIELDS = ("image1", "image2", "image3", "image4")


class CloudinaryUploader:
    def __init__(self, cloud_name: Optional[str] = None, api_key: Optional[str] = None, api_secret: Optional[str] = None):
        cloudinary.config(
            cloud_name=cloud_name or CLOUDINARY_NAME,
            api_key=api_key or CLOUDINARY_API_KEY,
            api_secret=api_secret or CLOUDINARY_SECRET_KEY,
            secure=True,
        )

    def upload(self, file: BinaryIO) -> str:
        result = cloudinary.uploader.upload(file, resource_type="image")
        return result["secure_url"]


_uploader: Optional[CloudinaryUploader] = None


def get_uploader() -> CloudinaryUploader:
    global _uploader
    if _uploader is None:
        _uploader = CloudinaryUploader()
    return _uploader


def upload_images(uploader, files: Sequence[BinaryIO]) -> List[str]:
    """Upload every file concurrently and return URLs in slot order.

    If any upload fails nothing is returned, so no listing ends up with a
    partial image set.
    """
    if not files:
        return []
    with ThreadPoolExecutor(max_workers=len(files)) as pool:
        futures = [pool.submit(uploader.upload, f) for f in files]
    urls = []
    for future in futures:
        try:
            urls.append(future.result())
        except Exception as e:
            logger.warning("Image upload failed: %s", e)
            raise UnexpectedError(f"Image upload failed: {e}") from e
    return urls
