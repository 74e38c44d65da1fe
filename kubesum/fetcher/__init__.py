"""Content fetcher: Secret/ConfigMap key bytes from the cluster or disk."""

from kubesum.fetcher.content_fetcher import ContentFetcher, SourceReader
from kubesum.fetcher.files import FileSourceReader

__all__ = ["ContentFetcher", "FileSourceReader", "SourceReader"]
