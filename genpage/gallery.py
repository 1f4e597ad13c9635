"""
gallery.py - Page and photo model for genpage

A page is built once from a title and a list of image paths. Photos are
sorted by path and each one gets a description made of the page title and
any bracketed tags found in its file name.
"""

from dataclasses import dataclass
from typing import Iterable, Tuple


@dataclass(frozen=True)
class Photo:
    """A photo with a description."""

    path: str
    desc: str


@dataclass(frozen=True)
class Page:
    """A page containing photos, in rendering order."""

    title: str
    photos: Tuple[Photo, ...] = ()


def get_tags(path: str) -> str:
    """
    Return the tags within a given file name.

        Input:  "2013-03-26 - 0001 [Daniel] [Pat] [Rita].jpg"
        Output: "[Daniel] [Pat] [Rita]"

    The result runs from the first "[" to the last "]". A name with an
    opening bracket but no closing one after it has no tags.
    """
    start = path.find("[")
    if start == -1:
        return ""
    end = path.rfind("]")
    if end < start:
        return ""
    return path[start:end + 1]


def describe(title: str, path: str) -> str:
    """Build the description of a photo from the page title and its tags"""
    tags = get_tags(path)
    if tags:
        return f"{title} {tags}"
    return title


def new_page(title: str, paths: Iterable[str]) -> Page:
    """Return a new page with the given title and set of photos.

    Paths are sorted by plain string order; nothing is checked on disk here.
    """
    photos = tuple(Photo(path=path, desc=describe(title, path)) for path in sorted(paths))
    return Page(title=title, photos=photos)
