from urllib.parse import urlsplit

ALLOWED_REFERENCE_SCHEMES = {"http", "https"}


def validate_reference_url(url: str) -> str:
    """Validate an image/document reference returned by the object store.

    Allows only absolute HTTP(S) URLs without embedded user credentials.
    """
    url = url.strip()
    parts = urlsplit(url)
    if parts.scheme not in ALLOWED_REFERENCE_SCHEMES or not parts.netloc:
        raise ValueError("Image reference must be an absolute http(s) URL")
    if parts.username or parts.password:
        raise ValueError("Image reference must not contain credentials")
    return url
