"""
build.py - Generate a static page of photos with thumbnails

Usage:
    genpage [-max 320] [-o output] [-title unknown] [-v] IMAGE...
    genpage --serve ...    Build and serve locally
    genpage -c page.json   Read defaults from a JSON config file

Output layout:

    output/index.html
    output/img/foo.jpg
    output/thumbs/foo.jpg
"""

import argparse
import functools
import http.server
import json
import logging
import os
import socketserver
import urllib.parse
from pathlib import Path
from typing import List, Optional, Sequence, Union

from jinja2 import Environment, FileSystemLoader, PackageLoader, TemplateError
from PIL import Image

from genpage.gallery import Page, new_page
from genpage.pipeline import DEFAULT_MAX, copy_file, create_thumbnail, make_dirs

logger = logging.getLogger(__name__)

INDEX_TEMPLATE = "index.html"

# Names and titles come from argv and the file system, so they may carry
# undecodable bytes as surrogates; those are written back out as raw bytes
INDEX_ENCODING = "utf-8"
INDEX_ERRORS = "surrogateescape"

DEFAULTS = {
    "max": DEFAULT_MAX,
    "output": "output",
    "title": "unknown",
    "verbose": False,
}

LOG_FORMAT = "[{asctime}] [{levelname:<8}] {name}: {message}"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

PathLike = Union[str, Path]


class BuildError(Exception):
    """A page build step failed; carries the stage and the path involved."""

    def __init__(self, stage: str, path: PathLike, cause: BaseException):
        self.stage = stage
        self.path = str(path)
        self.cause = cause
        super().__init__(f"{stage}: {self.path}: {cause}")


class ConfigError(Exception):
    """The configuration file could not be used."""


def url_quote(name: str) -> str:
    """Percent-encode a file name so the link matches its bytes on disk"""
    return urllib.parse.quote(os.fsencode(name))


def make_env(templates_path: Optional[PathLike] = None) -> Environment:
    """Set up Jinja2 with autoescaping and the base and url filters.

    Templates ship inside the package; templates_path points elsewhere.
    """
    if templates_path is None:
        loader = PackageLoader("genpage", "templates")
    else:
        loader = FileSystemLoader(str(templates_path))
    env = Environment(
        loader=loader,
        autoescape=True,
        trim_blocks=True,
    )
    env.filters["base"] = os.path.basename
    env.filters["url"] = url_quote
    return env


def render_index(page: Page, env: Optional[Environment] = None) -> str:
    """Render the index document for the given page"""
    if env is None:
        env = make_env()
    template = env.get_template(INDEX_TEMPLATE)
    return template.render(page=page)


def dump_index(index_path: PathLike, page: Page, env: Optional[Environment] = None) -> None:
    """Write the index document for the given page.

    The page is rendered in full before anything touches the disk, then
    written next to the target and moved into place, so a failed run never
    leaves a truncated index.html behind.
    """
    index_path = Path(index_path)
    html = render_index(page, env)

    tmp_path = index_path.with_name(index_path.name + ".tmp")
    try:
        tmp_path.write_text(html, encoding=INDEX_ENCODING, errors=INDEX_ERRORS)
        os.replace(tmp_path, index_path)
    except Exception:
        tmp_path.unlink(missing_ok=True)
        raise


def dump_page(output_dir: PathLike, page: Page, max_size: int = DEFAULT_MAX,
              env: Optional[Environment] = None) -> Path:
    """
    Create an index file for the given page, and store its photos and
    thumbnails of the given maximum dimension in the output directory.

    Stops at the first failure with a BuildError; files already written
    are left in place.
    """
    output_dir = Path(output_dir)

    # Create directory structure
    try:
        img_dir, thumbs_dir = make_dirs(output_dir)
    except OSError as err:
        raise BuildError("directories", output_dir, err) from err

    # Store images
    for photo in page.photos:
        dst = img_dir / os.path.basename(photo.path)
        logger.debug("Storing image %r", str(dst))
        try:
            copy_file(dst, photo.path)
        except OSError as err:
            raise BuildError("images", photo.path, err) from err

    # Create thumbnails
    for photo in page.photos:
        dst = thumbs_dir / os.path.basename(photo.path)
        logger.debug("Storing thumbnail %r", str(dst))
        try:
            create_thumbnail(dst, photo.path, max_size)
        except (OSError, ValueError, Image.DecompressionBombError) as err:
            raise BuildError("thumbnails", photo.path, err) from err

    # Create index.html
    index_path = output_dir / "index.html"
    logger.debug("Creating %r", str(index_path))
    try:
        dump_index(index_path, page, env)
    except (OSError, TemplateError, ValueError) as err:
        raise BuildError("index", index_path, err) from err

    return index_path


def load_config(config_path: PathLike) -> dict:
    """Load page settings from a JSON config file"""
    try:
        with open(config_path, encoding="utf-8") as f:
            config = json.load(f)
    except OSError as err:
        raise ConfigError(f"cannot read config {str(config_path)!r}: {err}") from err
    except json.JSONDecodeError as err:
        raise ConfigError(f"invalid JSON in config {str(config_path)!r}: {err}") from err

    if not isinstance(config, dict):
        raise ConfigError(f"config {str(config_path)!r} must contain a JSON object")

    unknown = sorted(set(config) - set(DEFAULTS))
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(unknown)}")

    if "max" in config:
        value = config["max"]
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ConfigError(f"max must be a positive integer, got {value!r}")
    for key in ("output", "title"):
        if key in config and not isinstance(config[key], str):
            raise ConfigError(f"{key} must be a string, got {config[key]!r}")
    if "verbose" in config and not isinstance(config["verbose"], bool):
        raise ConfigError(f"verbose must be true or false, got {config['verbose']!r}")

    return config


def resolve_settings(args: argparse.Namespace) -> dict:
    """Merge defaults, the config file and command line flags, in that order"""
    settings = dict(DEFAULTS)
    if args.config:
        settings.update(load_config(args.config))
    for key in DEFAULTS:
        value = getattr(args, key)
        if value is not None:
            settings[key] = value
    return settings


def positive_int(text: str) -> int:
    """argparse type for the thumbnail dimension"""
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {text!r}")
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return value


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        style="{",
        force=True,
    )


def serve(output_path: Path, port: int = 8000):
    """Serve the generated page locally"""

    class QuietHandler(http.server.SimpleHTTPRequestHandler):
        def address_string(self):
            # Skip reverse DNS lookup
            return self.client_address[0]

        def log_message(self, format, *args):
            logger.debug(format, *args)

    class ReusableServer(socketserver.TCPServer):
        allow_reuse_address = True

    handler = functools.partial(QuietHandler, directory=str(output_path))
    with ReusableServer(("", port), handler) as httpd:
        logger.info("Serving at http://localhost:%d (Ctrl+C to stop)", port)
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            logger.info("Stopped.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="genpage",
        description="Generate a page containing photos and their thumbnails",
    )
    parser.add_argument("-max", "--max", type=positive_int, default=None,
                        help=f"maximum thumbnail dimensions (width or height, default {DEFAULT_MAX})")
    parser.add_argument("-o", "--output", type=str, default=None,
                        help="output directory (default output)")
    parser.add_argument("-title", "--title", type=str, default=None,
                        help="page title (default unknown)")
    parser.add_argument("-v", "--verbose", action="store_true", default=None,
                        help="verbose output")
    parser.add_argument("-c", "--config", type=str, default=None,
                        help="JSON file with default settings")
    parser.add_argument("--serve", "-s", action="store_true",
                        help="Build and serve locally")
    parser.add_argument("--port", "-p", type=int, default=8000,
                        help="Port for local server")
    parser.add_argument("paths", nargs="*", metavar="IMAGE",
                        help="image files to include")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = resolve_settings(args)
    except ConfigError as err:
        setup_logging(False)
        logger.error(err)
        return 1

    setup_logging(settings["verbose"])

    paths: List[str] = list(args.paths)
    page = new_page(settings["title"], paths)
    output_path = Path(settings["output"])

    try:
        index_path = dump_page(output_path, page, settings["max"])
    except BuildError as err:
        logger.error(err)
        return 1

    logger.info("Built page %r (%d photos): %s", page.title, len(page.photos), index_path)

    if args.serve:
        serve(output_path, args.port)

    return 0
