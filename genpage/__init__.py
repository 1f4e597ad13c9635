"""genpage - Generate a static page of photos with thumbnails"""

__version__ = "0.1.0"
