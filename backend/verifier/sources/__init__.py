from verifier.sources.base import CertificateExtraction, ContentSource, PostExtraction
from verifier.sources.certificate import CertificateSource
from verifier.sources.post import PostSource, name_from_post_url

__all__ = [
    "CertificateExtraction",
    "ContentSource",
    "PostExtraction",
    "CertificateSource",
    "PostSource",
    "name_from_post_url",
]
