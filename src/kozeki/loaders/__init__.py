"""Source loaders."""

from kozeki.loaders.base import Loader, LoaderChain, MetadataDecorator
from kozeki.loaders.markdown import MarkdownLoader, split_front_matter

__all__ = [
    "Loader",
    "LoaderChain",
    "MarkdownLoader",
    "MetadataDecorator",
    "split_front_matter",
]
